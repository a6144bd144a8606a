"""
FastAPI application for the company election API.

Routes are grouped under /api/{API_VERSION}: auth, election status,
administration, positions, candidates and votes. Domain errors are rendered
as ErrorResponse bodies with the status code their class declares; anything
else is logged and returned as an opaque 500.
"""
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from http import HTTPStatus
from typing import List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.exceptions import HTTPException as StarletteHTTPException

from .auth import TokenIssuer
from .candidates import CandidateRegistry
from .casting import VoteCastingService
from .config import Settings, settings
from .database import PostgresStore
from .election_state import ElectionState
from .entities import Voter
from .errors import AuthenticationFailed, ElectionError, PermissionDenied
from .ledger import VoteLedger
from .maintenance import ElectionMaintenance
from .memory import MemoryStore
from .metrics import request_duration
from .models import (
    AuthResponse,
    BallotResponse,
    CandidateCreateRequest,
    CandidateListResponse,
    CandidateResponse,
    CandidateUpdateRequest,
    CastVoteRequest,
    CastVoteResponse,
    ChangePasswordRequest,
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    MaintenanceResponse,
    MessageResponse,
    PositionCreateRequest,
    PositionResponse,
    PositionUpdateRequest,
    RegisterRequest,
    RegistrationStatusResponse,
    ResultsResponse,
    UserVoteStatusResponse,
    VoterResponse,
    VotingStatusResponse,
)
from .positions import PositionRegistry
from .results import ResultsAggregator
from .store import Store
from .voters import VoterRegistry

# Configure logging
logging.basicConfig(
    level=logging.INFO if not settings.DEBUG else logging.DEBUG,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Rate limiter. Limits are resolved per request from rate_limits, which
# create_app fills from its config; both are shared by every app in the process.
limiter = Limiter(key_func=get_remote_address)
rate_limits = {"auth": settings.AUTH_RATE_LIMIT, "votes": settings.RATE_LIMIT}

bearer_scheme = HTTPBearer(auto_error=False)

INTERNAL_ERROR = "Internal server error"


@dataclass
class Services:
    """Everything a request handler needs, wired around one store and one election state."""

    store: Store
    election_state: ElectionState
    positions: PositionRegistry
    candidates: CandidateRegistry
    ledger: VoteLedger
    voters: VoterRegistry
    casting: VoteCastingService
    results: ResultsAggregator
    maintenance: ElectionMaintenance
    tokens: TokenIssuer

    @classmethod
    def build(cls, store: Store, election_state: ElectionState, config: Settings) -> "Services":
        positions = PositionRegistry(store)
        candidates = CandidateRegistry(store, default_photo=config.DEFAULT_PROFILE_PHOTO)
        ledger = VoteLedger(store)
        voters = VoterRegistry(
            store, election_state,
            bcrypt_rounds=config.BCRYPT_ROUNDS,
            password_min_length=config.PASSWORD_MIN_LENGTH
        )
        return cls(
            store=store,
            election_state=election_state,
            positions=positions,
            candidates=candidates,
            ledger=ledger,
            voters=voters,
            casting=VoteCastingService(store, election_state, candidates, ledger, voters),
            results=ResultsAggregator(store, election_state),
            maintenance=ElectionMaintenance(store, ledger, candidates, voters),
            tokens=TokenIssuer(
                config.JWT_SECRET,
                algorithm=config.JWT_ALGORITHM,
                expires_minutes=config.JWT_EXPIRES_MINUTES
            ),
        )


def build_store(config: Settings) -> Store:
    """Select the storage backend named in configuration."""
    if config.STORAGE_BACKEND == "postgres":
        return PostgresStore(config)
    if config.STORAGE_BACKEND == "memory":
        return MemoryStore()
    raise ValueError(f"Unknown STORAGE_BACKEND: {config.STORAGE_BACKEND}")


# ═══════════════════════════════════════════════════════════════════
# DEPENDENCIES
# ═══════════════════════════════════════════════════════════════════

def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_current_voter(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    services: Services = Depends(get_services),
) -> Voter:
    """Resolve the bearer token to a stored voter."""
    if credentials is None:
        raise AuthenticationFailed()
    payload = services.tokens.verify(credentials.credentials)
    voter = await services.store.get_voter(payload["sub"])
    if voter is None:
        raise AuthenticationFailed("The user belonging to this token does no longer exist.")
    return voter


async def require_admin(voter: Voter = Depends(get_current_voter)) -> Voter:
    if not voter.is_admin:
        raise PermissionDenied()
    return voter


async def election_error_handler(request: Request, exc: ElectionError) -> JSONResponse:
    """Render domain errors as ErrorResponse bodies."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=exc.error, message=exc.message, details=exc.details).model_dump()
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render framework HTTP errors (unknown routes, internal errors) as ErrorResponse bodies."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=HTTPStatus(exc.status_code).phrase.replace(" ", ""),
            message=str(exc.detail)
        ).model_dump(),
        headers=getattr(exc, "headers", None)
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request body and parameter validation failures as ErrorResponse bodies."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error="RequestValidationError",
            message="Request validation failed.",
            details={"errors": jsonable_encoder(exc.errors())}
        ).model_dump()
    )


def internal_error(action: str, e: Exception) -> HTTPException:
    logger.error(f"Error {action}: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=INTERNAL_ERROR
    )


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    401: {"model": ErrorResponse, "description": "Not authenticated"},
    403: {"model": ErrorResponse, "description": "Forbidden"},
    404: {"model": ErrorResponse, "description": "Not found"},
    409: {"model": ErrorResponse, "description": "Conflict"},
    500: {"description": "Internal server error"},
}

router = APIRouter(responses=ERROR_RESPONSES)
root_router = APIRouter()


# ═══════════════════════════════════════════════════════════════════
# AUTH ENDPOINTS
# ═══════════════════════════════════════════════════════════════════

@router.post("/auth/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(lambda: rate_limits["auth"])
async def register(request: Request, body: RegisterRequest,
                   services: Services = Depends(get_services)) -> AuthResponse:
    """
    Register a voter account and return an access token.

    Only allowed while an administrator has registration enabled.
    """
    try:
        voter = await services.voters.register(
            body.first_name, body.last_name, body.company_id, body.password
        )
        return AuthResponse(
            token=services.tokens.issue(voter),
            user=VoterResponse(**voter.to_public_dict())
        )
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("registering user", e)


@router.post("/auth/login", response_model=AuthResponse)
@limiter.limit(lambda: rate_limits["auth"])
async def login(request: Request, body: LoginRequest,
                services: Services = Depends(get_services)) -> AuthResponse:
    """Exchange a company ID and password for an access token."""
    try:
        voter = await services.voters.authenticate(body.company_id, body.password)
        return AuthResponse(
            token=services.tokens.issue(voter),
            user=VoterResponse(**voter.to_public_dict())
        )
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("logging in", e)


@router.patch("/auth/change-password", response_model=MessageResponse)
async def change_password(body: ChangePasswordRequest,
                          voter: Voter = Depends(get_current_voter),
                          services: Services = Depends(get_services)) -> MessageResponse:
    try:
        await services.voters.change_password(voter.id, body.current_password, body.new_password)
        return MessageResponse(message="Password changed successfully.")
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("changing password", e)


# ═══════════════════════════════════════════════════════════════════
# ELECTION STATE & ADMINISTRATION
# ═══════════════════════════════════════════════════════════════════

@router.get("/election/status", response_model=VotingStatusResponse)
async def get_public_election_status(voter: Voter = Depends(get_current_voter),
                                     services: Services = Depends(get_services)):
    """Voting status for any authenticated user."""
    return VotingStatusResponse(is_voting_open=services.election_state.is_voting_open())


@router.get("/admin/registration-status", response_model=RegistrationStatusResponse)
async def get_registration_status(services: Services = Depends(get_services)):
    """Public: lets the client decide whether to show the sign-up form."""
    return RegistrationStatusResponse(
        is_registration_open=services.election_state.is_registration_open()
    )


@router.get("/admin/voting-status", response_model=VotingStatusResponse)
async def get_voting_status(admin: Voter = Depends(require_admin),
                            services: Services = Depends(get_services)):
    return VotingStatusResponse(is_voting_open=services.election_state.is_voting_open())


@router.post("/admin/open-voting", response_model=VotingStatusResponse)
async def open_voting(admin: Voter = Depends(require_admin),
                      services: Services = Depends(get_services)):
    services.election_state.set_voting_open(True)
    logger.info(f"Voting process opened by admin: {admin.full_name} ({admin.company_id})")
    return VotingStatusResponse(
        message="Voting process has been opened.",
        is_voting_open=services.election_state.is_voting_open()
    )


@router.post("/admin/close-voting", response_model=VotingStatusResponse)
async def close_voting(admin: Voter = Depends(require_admin),
                       services: Services = Depends(get_services)):
    services.election_state.set_voting_open(False)
    logger.info(f"Voting process closed by admin: {admin.full_name} ({admin.company_id})")
    return VotingStatusResponse(
        message="Voting process has been closed.",
        is_voting_open=services.election_state.is_voting_open()
    )


@router.post("/admin/enable-registration", response_model=RegistrationStatusResponse)
async def enable_registration(admin: Voter = Depends(require_admin),
                              services: Services = Depends(get_services)):
    services.election_state.set_registration_open(True)
    logger.info(f"User registration enabled by admin: {admin.full_name} ({admin.company_id})")
    return RegistrationStatusResponse(
        message="User registration has been enabled.",
        is_registration_open=services.election_state.is_registration_open()
    )


@router.post("/admin/disable-registration", response_model=RegistrationStatusResponse)
async def disable_registration(admin: Voter = Depends(require_admin),
                               services: Services = Depends(get_services)):
    services.election_state.set_registration_open(False)
    logger.info(f"User registration disabled by admin: {admin.full_name} ({admin.company_id})")
    return RegistrationStatusResponse(
        message="User registration has been disabled.",
        is_registration_open=services.election_state.is_registration_open()
    )


@router.post("/admin/clear-database", response_model=MaintenanceResponse)
async def clear_database(admin: Voter = Depends(require_admin),
                         services: Services = Depends(get_services)):
    """Delete all ballots and reset voter flags and tallies for the next election cycle."""
    try:
        details = await services.maintenance.clear_for_new_election()
        logger.info(f"Database cleared for new election by admin: {admin.full_name} ({admin.company_id})")
        return MaintenanceResponse(
            message="Database cleared for the next election cycle.",
            details=details
        )
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("clearing database", e)


@router.post("/admin/reconcile", response_model=MaintenanceResponse)
async def reconcile(admin: Voter = Depends(require_admin),
                    services: Services = Depends(get_services)):
    """Repair ballots left partially committed. Safe to run repeatedly."""
    try:
        details = await services.maintenance.reconcile()
        return MaintenanceResponse(message="Reconciliation complete.", details=details)
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("reconciling ballots", e)


@router.delete("/admin/voters", response_model=MaintenanceResponse)
async def delete_voters(admin: Voter = Depends(require_admin),
                        services: Services = Depends(get_services)):
    """Bulk delete every voter account. Administrator accounts are kept."""
    try:
        deleted = await services.voters.delete_all_voters()
        logger.warning(f"All voters deleted by admin: {admin.full_name} ({admin.company_id})")
        return MaintenanceResponse(message="Voter accounts deleted.", details={"voters_deleted": deleted})
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("deleting voters", e)


# ═══════════════════════════════════════════════════════════════════
# POSITIONS
# ═══════════════════════════════════════════════════════════════════

@router.post("/positions", response_model=PositionResponse, status_code=status.HTTP_201_CREATED)
async def create_position(body: PositionCreateRequest,
                          admin: Voter = Depends(require_admin),
                          services: Services = Depends(get_services)):
    try:
        position = await services.positions.create(**body.model_dump())
        return PositionResponse(**position.to_dict())
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("creating position", e)


@router.get("/positions", response_model=List[PositionResponse])
async def list_positions(status: Optional[str] = None,
                         services: Services = Depends(get_services)):
    """All positions sorted by order, then name. Filter with ?status=active."""
    try:
        positions = await services.positions.list(status)
        return [PositionResponse(**p.to_dict()) for p in positions]
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("fetching positions", e)


@router.get("/positions/{position_id}", response_model=PositionResponse)
async def get_position(position_id: str,
                       admin: Voter = Depends(require_admin),
                       services: Services = Depends(get_services)):
    try:
        position = await services.positions.get(position_id)
        return PositionResponse(**position.to_dict())
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("fetching position", e)


@router.put("/positions/{position_id}", response_model=PositionResponse)
async def update_position(position_id: str, body: PositionUpdateRequest,
                          admin: Voter = Depends(require_admin),
                          services: Services = Depends(get_services)):
    try:
        position = await services.positions.update(position_id, **body.model_dump(exclude_none=True))
        return PositionResponse(**position.to_dict())
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("updating position", e)


@router.delete("/positions/{position_id}", response_model=MessageResponse)
async def delete_position(position_id: str,
                          admin: Voter = Depends(require_admin),
                          services: Services = Depends(get_services)):
    try:
        await services.positions.delete(position_id)
        return MessageResponse(message="Position deleted successfully.")
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("deleting position", e)


# ═══════════════════════════════════════════════════════════════════
# CANDIDATES
# ═══════════════════════════════════════════════════════════════════

@router.get("/candidates", response_model=CandidateListResponse)
async def list_candidates(search: Optional[str] = None, position_id: Optional[str] = None,
                          services: Services = Depends(get_services)):
    """Candidates, optionally filtered by name substring and position."""
    try:
        candidates = await services.candidates.list(search=search, position_id=position_id)
        return CandidateListResponse(
            results=len(candidates),
            candidates=[CandidateResponse(**c.to_dict()) for c in candidates]
        )
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("fetching candidates", e)


@router.get("/candidates/{candidate_id}", response_model=CandidateResponse)
async def get_candidate(candidate_id: str, services: Services = Depends(get_services)):
    try:
        candidate = await services.candidates.get(candidate_id)
        return CandidateResponse(**candidate.to_dict())
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("fetching candidate", e)


@router.post("/candidates", response_model=CandidateResponse, status_code=status.HTTP_201_CREATED)
async def create_candidate(body: CandidateCreateRequest,
                           admin: Voter = Depends(require_admin),
                           services: Services = Depends(get_services)):
    try:
        candidate = await services.candidates.create(**body.model_dump())
        return CandidateResponse(**candidate.to_dict())
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("creating candidate", e)


@router.patch("/candidates/{candidate_id}", response_model=CandidateResponse)
async def update_candidate(candidate_id: str, body: CandidateUpdateRequest,
                           admin: Voter = Depends(require_admin),
                           services: Services = Depends(get_services)):
    try:
        candidate = await services.candidates.update(candidate_id, **body.model_dump())
        return CandidateResponse(**candidate.to_dict())
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("updating candidate", e)


@router.delete("/candidates/{candidate_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_candidate(candidate_id: str,
                           admin: Voter = Depends(require_admin),
                           services: Services = Depends(get_services)):
    try:
        await services.candidates.delete(candidate_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("deleting candidate", e)


# ═══════════════════════════════════════════════════════════════════
# VOTES
# ═══════════════════════════════════════════════════════════════════

@router.post("/votes/cast", response_model=CastVoteResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(lambda: rate_limits["votes"])
async def cast_vote(request: Request, body: CastVoteRequest,
                    voter: Voter = Depends(get_current_voter),
                    services: Services = Depends(get_services)) -> CastVoteResponse:
    """
    Cast the authenticated voter's ballot.

    - **selections**: position ID -> list of candidate IDs

    Each position must be active, the number of candidates selected must lie
    within the position's min/max selectable range, and every candidate must
    stand for that position. A voter can cast exactly one ballot.
    """
    try:
        ballot = await services.casting.cast_vote(voter.id, body.selections)
        return CastVoteResponse(ballot=BallotResponse(**ballot.to_dict()))
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("casting vote", e)


@router.get("/votes/results", response_model=ResultsResponse)
async def get_election_results(voter: Voter = Depends(get_current_voter),
                               services: Services = Depends(get_services)) -> ResultsResponse:
    """Per-position results; vote counts are null while voting is open."""
    try:
        results = await services.results.get_results()
        return ResultsResponse(**results)
    except ElectionError:
        raise
    except Exception as e:
        raise internal_error("fetching election results", e)


@router.get("/votes/user-status", response_model=UserVoteStatusResponse)
async def get_user_vote_status(voter: Voter = Depends(get_current_voter)):
    return UserVoteStatusResponse(has_voted=voter.has_voted)


# ═══════════════════════════════════════════════════════════════════
# OPERATIONS
# ═══════════════════════════════════════════════════════════════════

@router.get(
    "/health",
    response_model=HealthResponse,
    responses={503: {"model": HealthResponse, "description": "Service unhealthy"}}
)
async def health_check(services: Services = Depends(get_services)):
    """Check health of the service and its storage backend."""
    try:
        store_healthy = await services.store.check_health()
    except Exception as e:
        logger.error(f"Storage health check error: {e}")
        store_healthy = False

    response = HealthResponse(
        status="healthy" if store_healthy else "unhealthy",
        services={"storage": "connected" if store_healthy else "disconnected"},
        timestamp=datetime.now(timezone.utc)
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK if store_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content=response.model_dump(mode="json")
    )


@root_router.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


@root_router.get("/")
async def root(request: Request):
    """Root endpoint with API information."""
    config = request.app.state.config
    return {
        "service": config.SERVICE_NAME,
        "version": config.API_VERSION,
        "status": "running",
        "docs": "/docs",
        "health": f"/api/{config.API_VERSION}/health",
        "metrics": "/metrics"
    }


def create_app(store: Optional[Store] = None,
               election_state: Optional[ElectionState] = None,
               config: Optional[Settings] = None) -> FastAPI:
    """
    Build the application.

    When a store is given it is used as-is and left open on shutdown;
    otherwise the configured backend is created and initialized at startup.
    """
    config = config or settings
    election_state = election_state or ElectionState()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup and shutdown events."""
        logger.info(f"Starting {config.SERVICE_NAME} service...")
        owns_store = app.state.services is None

        try:
            if owns_store:
                backend = build_store(config)
                await backend.initialize()
                app.state.services = Services.build(backend, election_state, config)

            if config.ADMIN_COMPANY_ID and config.ADMIN_PASSWORD:
                await app.state.services.voters.ensure_admin(
                    config.ADMIN_COMPANY_ID, config.ADMIN_PASSWORD,
                    config.ADMIN_FIRST_NAME, config.ADMIN_LAST_NAME
                )

            logger.info(f"{config.SERVICE_NAME} started successfully")

        except Exception as e:
            logger.error(f"Failed to start {config.SERVICE_NAME}: {e}")
            raise

        yield

        logger.info(f"Shutting down {config.SERVICE_NAME} service...")
        if owns_store:
            await app.state.services.store.close()
            app.state.services = None

    app = FastAPI(
        title="Company Election API",
        description="API for managing positions and candidates, casting ballots and tallying results",
        version=config.API_VERSION,
        lifespan=lifespan
    )
    app.state.config = config
    app.state.services = Services.build(store, election_state, config) if store is not None else None
    rate_limits.update(auth=config.AUTH_RATE_LIMIT, votes=config.RATE_LIMIT)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=config.CORS_ALLOW_CREDENTIALS,
        allow_methods=config.CORS_ALLOW_METHODS,
        allow_headers=config.CORS_ALLOW_HEADERS,
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(ElectionError, election_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    @app.middleware("http")
    async def prometheus_middleware(request: Request, call_next):
        """Middleware to track request duration."""
        started = time.perf_counter()
        response = await call_next(request)
        route = request.scope.get("route")
        request_duration.labels(
            method=request.method,
            endpoint=getattr(route, "path", request.url.path),
            status=response.status_code
        ).observe(time.perf_counter() - started)
        return response

    app.include_router(router, prefix=f"/api/{config.API_VERSION}")
    app.include_router(root_router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "election_api.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level="info"
    )

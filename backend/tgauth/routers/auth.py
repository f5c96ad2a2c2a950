"""Authentication routes: register, login + OTP, Telegram change, recovery."""
from fastapi import APIRouter, Depends, Response, status

from ..dependencies import get_orchestrator
from ..schemas import (
    LoginRequest,
    OkResponse,
    OtpChallengeResponse,
    OtpInitiateRequest,
    RecoverRequest,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
    UserResponse,
    VerifyOtpRequest,
)
from ..use_cases.auth_flows import AuthOrchestrator, OtpChallenge

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_no_store(response: Response) -> None:
    # Responses may carry OTPs, tokens or recovery results.
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"


def _challenge_response(challenge: OtpChallenge) -> OtpChallengeResponse:
    return OtpChallengeResponse(
        challengeId=challenge.challenge_id,
        expires_at=challenge.expires_at,
        otpSent=challenge.otp_sent,
        debug_otp=challenge.debug_otp,
    )


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, orchestrator: AuthOrchestrator = Depends(get_orchestrator)):
    user = orchestrator.register(payload.email, payload.username, payload.password)
    return RegisterResponse(user=UserResponse(id=user.id, email=user.email, username=user.username))


@router.post("/login", response_model=OtpChallengeResponse)
def login(
    payload: LoginRequest,
    response: Response,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    """Validate password and issue a login OTP (delivered to the linked Telegram chat)."""
    _set_no_store(response)
    return _challenge_response(orchestrator.login(payload.identifier, payload.password))


@router.post("/verify-otp", response_model=TokenResponse)
def verify_otp(
    payload: VerifyOtpRequest,
    response: Response,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    _set_no_store(response)
    grant = orchestrator.verify_otp(payload.challengeId, payload.otp)
    return TokenResponse(token=grant.access_token, token_type=grant.token_type, expires_in=grant.expires_in)


@router.post("/otp/initiate", response_model=OtpChallengeResponse)
def otp_initiate(
    payload: OtpInitiateRequest,
    response: Response,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    _set_no_store(response)
    challenge = orchestrator.initiate_otp(payload.identifier, payload.password, context=payload.context)
    return _challenge_response(challenge)


@router.post("/telegram/change/initiate", response_model=OtpChallengeResponse)
def telegram_change_initiate(
    payload: LoginRequest,
    response: Response,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    _set_no_store(response)
    return _challenge_response(orchestrator.initiate_telegram_change(payload.identifier, payload.password))


@router.post("/telegram/change/confirm", response_model=OkResponse)
def telegram_change_confirm(
    payload: VerifyOtpRequest,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    orchestrator.confirm_telegram_change(payload.challengeId, payload.otp)
    return OkResponse(message="Old Telegram revoked. Initiate new linking.")


@router.post("/recover/verify", response_model=OkResponse)
def recover_verify(
    payload: RecoverRequest,
    response: Response,
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
):
    _set_no_store(response)
    orchestrator.recover(payload.identifier, payload.recovery_code)
    return OkResponse(message="Recovery verified. Initiate linking with new Telegram.")

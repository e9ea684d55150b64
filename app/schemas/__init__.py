from app.schemas.auth import (
    RegisterRequest, SendOTPRequest, VerifyRegisterRequest,
    LoginRequest, VerifyLoginRequest, ForgotPasswordRequest,
    ResetPasswordRequest, ChangePasswordRequest, RefreshTokenRequest,
    TokenResponse, LoginWithTokenResponse, LoginResponse, MessageResponse,
)
from app.schemas.user import UserOut, UserUpdateRequest, UserAuthResponse

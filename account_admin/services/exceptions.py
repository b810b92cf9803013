# account_admin/services/exceptions.py

# --- Base Exceptions ---
class ValidationError(Exception):
    """입력값이 비어 있거나 정책을 위반할 때"""
    pass

class NotFoundError(Exception):
    """참조한 사용자/역할/권한/연결이 존재하지 않을 때"""
    pass

class ConflictError(Exception):
    """중복 생성, 비밀번호 변경 실패, 로그인 실패 등 현재 상태와 충돌할 때"""
    pass

# --- Validation Exceptions ---
class InvalidUserError(ValidationError):
    """사용자 이름이 비어 있을 때"""
    pass

class InvalidPasswordError(ValidationError):
    """비밀번호가 비어 있거나, 사용자 이름을 포함하거나, 강도 정책을 통과하지 못할 때"""
    pass

class InvalidRoleError(ValidationError):
    """역할 이름이 비어 있을 때"""
    pass

# --- Not Found Exceptions ---
class UserNotFoundError(NotFoundError):
    """사용자를 찾을 수 없을 때"""
    pass

class RoleNotFoundError(NotFoundError):
    """역할을 찾을 수 없을 때"""
    pass

class PermissionNotFoundError(NotFoundError):
    """권한을 찾을 수 없을 때"""
    pass

class RolePermissionNotFoundError(NotFoundError):
    """역할-권한 연결을 찾을 수 없을 때"""
    pass

# --- Conflict Exceptions ---
class UserAlreadyExistsError(ConflictError):
    """사용자 이름이 이미 존재할 때"""
    pass

class RoleAlreadyExistsError(ConflictError):
    """역할 이름이 이미 존재할 때"""
    pass

class MembershipConflictError(ConflictError):
    """멤버십 추가 중 같은 멤버십 추가나 역할 삭제가 동시에 반영되었을 때"""
    pass

class PasswordChangeError(ConflictError):
    """비밀번호 변경 실패 시"""
    pass

class AuthenticationError(ConflictError):
    """로그인 자격 증명 실패 시"""
    pass

# --- Auth Exceptions (HTTP 경계 전용) ---
class TokenInvalidError(Exception):
    """토큰이 유효하지 않거나 없을 때"""
    pass

class AccessDeniedError(Exception):
    """관리자 역할이 없는 사용자가 관리 기능을 호출할 때"""
    pass

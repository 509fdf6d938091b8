# errors.py
# 核心流程會拋出的例外種類
# 每種例外都帶著 HTTP 狀態碼，main.py 的 exception handler 會統一轉成 JSON


class WritifyError(Exception):
    status_code = 500

    def __init__(self, message: str, field: str | None = None, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.field = field
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> dict:
        return {"error": self.message, "field": self.field}


class ValidationError(WritifyError):
    """輸入資料缺漏、格式錯誤或超出範圍 (使用者修正輸入即可)"""
    status_code = 400

    def __init__(self, field: str, message: str, status_code: int | None = None):
        super().__init__(message, field=field, status_code=status_code)


class AuthorizationError(WritifyError):
    """操作者對目標資源沒有權限 (例如刪別人的需求、評價自己)"""
    status_code = 403


class SignInRequiredError(AuthorizationError):
    """訪客或未登入者嘗試寫入資料"""
    status_code = 401

    def __init__(self, message: str = "Sign in required to perform this action"):
        super().__init__(message)


class ConflictError(WritifyError):
    """狀態前提不成立 (例如需求已被接走)"""
    status_code = 409


class NotFoundError(WritifyError):
    status_code = 404

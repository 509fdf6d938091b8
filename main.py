import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.sessions import SessionMiddleware

from config import (
    ENABLE_SWEEPER,
    FRONTEND_ORIGINS,
    HTTPS_ONLY,
    LOG_LEVEL,
    SECRET_KEY,
    SESSION_MAX_AGE,
    UPLOAD_ROOT,
)
from db import dispose_engine, get_engine, get_session_factory
from errors import WritifyError
from init_db import init_database
from services.sweeper import run_sweeper_forever
from utils import setup_upload_directories

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


# --- 1. 啟動 / 關閉流程 ---
@asynccontextmanager
async def lifespan(app: FastAPI):
    # 每次伺服器啟動時，自動檢查並建立資料表與上傳資料夾
    setup_upload_directories()
    await init_database(get_engine())

    # 背景排程：每天 00:00 (UTC) 清除過期需求
    sweeper_task = None
    if ENABLE_SWEEPER:
        sweeper_task = asyncio.create_task(run_sweeper_forever(get_session_factory()))

    yield

    if sweeper_task is not None:
        sweeper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper_task
    await dispose_engine()


# --- 2. 建立應用程式 ---
app = FastAPI(title="Writify API", lifespan=lifespan)

# --- 3. 設定 Session (登入狀態管理) ---
app.add_middleware(
    SessionMiddleware,
    secret_key=SECRET_KEY,
    max_age=SESSION_MAX_AGE,  # 登入狀態維持 1 天
    same_site="lax",          # 防止 CSRF 攻擊的設定
    https_only=HTTPS_ONLY,    # 正式上線有 HTTPS 時應設為 True
)

# --- 4. CORS：前端在不同網域，要允許帶 Cookie ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=FRONTEND_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# 掛載上傳檔案目錄 (作品範例圖片)
app.mount("/uploads", StaticFiles(directory=UPLOAD_ROOT, check_dir=False), name="uploads")


# --- 5. 錯誤統一轉成 {"error": ..., "field": ...} ---
@app.exception_handler(WritifyError)
async def handle_writify_error(request: Request, exc: WritifyError):
    if exc.status_code >= 500:
        logger.error("Unhandled service error on %s: %s", request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(RequestValidationError)
async def handle_request_validation_error(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    field = None
    message = "Invalid request"
    if errors:
        first = errors[0]
        # loc 例如 ("body", "num_pages")
        names = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path")]
        field = names[0] if names else None
        message = first.get("msg", message)
    return JSONResponse(status_code=400, content={"error": message, "field": field})


# --- 6. 匯入各個功能的路由 (Router) ---
from routes.auth import router as auth_router  # noqa: E402
from routes.assignment_requests import router as assignment_requests_router  # noqa: E402
from routes.rating import router as rating_router  # noqa: E402
from routes.users import router as users_router  # noqa: E402

app.include_router(auth_router)                 # /auth/...
app.include_router(assignment_requests_router)  # /api/assignment-requests/...
app.include_router(rating_router)               # /api/ratings
app.include_router(users_router)                # /api/profile, /api/writers ...


# --- 7. 健康檢查 ---
@app.get("/api/test")
async def health_check():
    return {"message": "Backend server is working correctly"}

from contextlib import asynccontextmanager
from fastapi import FastAPI, Depends, HTTPException, Query, Request, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from typing import List, Optional
import logging
from logging.handlers import RotatingFileHandler
import math
import os
import uuid

import schemas
import crud
import auth
import config
import database

from database import get_db
from models import User
from realtime import RealtimeHub
from store import SqlAlchemyTaskStore

# ---------------------------------------------------------
# LOGGING CONFIGURATION
# ---------------------------------------------------------

# Create logs directory if it doesn't exist
os.makedirs(config.LOG_DIR, exist_ok=True)

# Errors also go to their own file so they can be reviewed separately
error_file_handler = RotatingFileHandler(
    config.LOG_DIR / config.ERROR_LOG_FILE,
    maxBytes=config.LOG_MAX_BYTES,
    backupCount=config.LOG_BACKUP_COUNT
)
error_file_handler.setLevel(logging.ERROR)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        # File handler with rotation (max 10MB per file, keep 5 backup files)
        RotatingFileHandler(
            config.LOG_DIR / config.LOG_FILE,
            maxBytes=config.LOG_MAX_BYTES,
            backupCount=config.LOG_BACKUP_COUNT
        ),
        error_file_handler,
        # Console handler for development
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------
# STARTUP / SHUTDOWN
# ---------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Create tables, then run the realtime hub for the life of the server.
    """
    database.init_db(database.engine)
    logger.info("Database tables created successfully")

    hub = RealtimeHub(SqlAlchemyTaskStore(database.SessionLocal))
    app.state.hub = hub
    await hub.start()
    try:
        yield
    finally:
        await hub.stop()
        logger.info("Realtime hub shut down")


# ---------------------------------------------------------
# FASTAPI APP INIT
# ---------------------------------------------------------
app = FastAPI(
    title=config.APP_NAME,
    description="Task management backend with live task updates and team leaderboard",
    version=config.APP_VERSION,
    lifespan=lifespan
)

# CORS middleware for frontend integration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_failed_requests(request: Request, call_next):
    response = await call_next(request)
    if response.status_code >= 400:
        logger.warning(f"API Error: {response.status_code} {request.method} {request.url.path}")
    return response


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """
    Last-resort handler: log everything, show the client nothing internal.
    """
    error_id = uuid.uuid4().hex[:12]
    logger.error(f"Unhandled error {error_id} on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": {
                "message": "An unexpected error occurred",
                "code": 500,
                "id": error_id,
            }
        },
    )


logger.info("FastAPI application initialized")

# ---------------------------------------------------------
# TASK ROUTES
# ---------------------------------------------------------

@app.post("/api/tasks", response_model=schemas.TaskResponse)
def create_task(
    task: schemas.TaskCreate,
    current_user: User = Depends(auth.require_admin),
    db: Session = Depends(get_db)
):
    """
    Create a task (admin only). New tasks start as pending.
    """
    try:
        return crud.create_task(db, task, current_user.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error creating task: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to create task")


@app.get("/api/tasks", response_model=List[schemas.TaskResponse])
def get_my_tasks(
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db)
):
    """
    Tasks assigned to the caller, newest first.
    """
    try:
        tasks = crud.get_tasks_for_user(db, current_user.id)
        logger.info(f"Retrieved {len(tasks)} tasks for user {current_user.id}")
        return tasks
    except Exception as e:
        logger.error(f"Error fetching tasks: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch tasks")


@app.get("/api/tasks/stats", response_model=schemas.TaskStatsResponse)
def get_task_stats(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    date_range: Optional[str] = Query(default=None, alias="dateRange"),
    search: Optional[str] = None,
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db)
):
    """
    Dashboard counts plus upcoming deadlines and recently completed tasks.
    """
    try:
        return crud.get_task_stats(db, current_user.id, status, priority, date_range, search)
    except Exception as e:
        logger.error(f"Error fetching task stats: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch task stats")


@app.put("/api/tasks/{task_id}", response_model=schemas.TaskResponse)
def update_task(
    task_id: int,
    payload: schemas.TaskUpdate,
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db)
):
    """
    Partial update. Status changes follow the same transition rules as the live channel.
    """
    try:
        return crud.update_task(db, task_id, payload, current_user.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating task {task_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update task")


@app.get("/api/tasks/{task_id}/activities", response_model=List[schemas.TaskActivityResponse])
def get_task_activities(
    task_id: int,
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db)
):
    try:
        if not crud.get_task_by_id(db, task_id):
            raise HTTPException(status_code=404, detail="Task not found")
        return crud.get_task_activities(db, task_id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error fetching activities for task {task_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch task activities")


@app.delete("/api/admin/tasks/{task_id}/activities", response_model=schemas.MessageResponse)
def delete_task_activities(
    task_id: int,
    current_user: User = Depends(auth.require_admin),
    db: Session = Depends(get_db)
):
    try:
        count = crud.delete_task_activities(db, task_id)
        logger.info(f"Deleted {count} activities of task {task_id} by admin {current_user.id}")
        return {"message": "Task activities deleted successfully"}
    except Exception as e:
        logger.error(f"Error deleting task activities: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to delete task activities")


@app.delete("/api/admin/tasks/{task_id}", response_model=schemas.MessageResponse)
def delete_task(
    task_id: int,
    current_user: User = Depends(auth.require_admin),
    db: Session = Depends(get_db)
):
    try:
        if not crud.delete_task(db, task_id):
            raise HTTPException(status_code=404, detail="Task not found")
        return {"message": "Task and related activities deleted successfully"}
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error deleting task {task_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to delete task")


# ---------------------------------------------------------
# ADMIN USER ROUTES
# ---------------------------------------------------------

@app.get("/api/admin/users", response_model=schemas.UserPageResponse)
def list_users(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=config.DEFAULT_PAGE_SIZE, ge=1),
    current_user: User = Depends(auth.require_admin),
    db: Session = Depends(get_db)
):
    try:
        users, total = crud.get_users_page(db, page, limit)
        return {
            "users": users,
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "pages": math.ceil(total / limit),
            },
        }
    except Exception as e:
        logger.error(f"Error listing users: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch users")


@app.get("/api/admin/users/{user_id}/tasks", response_model=List[schemas.TaskResponse])
def get_user_tasks(
    user_id: int,
    current_user: User = Depends(auth.require_admin),
    db: Session = Depends(get_db)
):
    try:
        return crud.get_tasks_for_user(db, user_id, order_by_updated=True)
    except Exception as e:
        logger.error(f"Error fetching tasks of user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch user tasks")


@app.get("/api/admin/users/{user_id}/tasks/stats", response_model=schemas.TaskCounts)
def get_user_task_stats(
    user_id: int,
    current_user: User = Depends(auth.require_admin),
    db: Session = Depends(get_db)
):
    try:
        return crud.get_user_task_counts(db, user_id)
    except Exception as e:
        logger.error(f"Error fetching task stats of user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch user task stats")


@app.put("/api/admin/users/{user_id}", response_model=schemas.UserResponse)
def update_user(
    user_id: int,
    payload: schemas.UserAdminUpdate,
    current_user: User = Depends(auth.require_admin),
    db: Session = Depends(get_db)
):
    try:
        return crud.update_user(db, user_id, payload, current_user)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error updating user {user_id}: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update user")


# ---------------------------------------------------------
# NOTIFICATION ROUTES
# ---------------------------------------------------------

@app.get("/api/notifications", response_model=List[schemas.NotificationResponse])
def get_notifications(
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return crud.get_notifications(db, current_user.id)
    except Exception as e:
        logger.error(f"Error fetching notifications: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch notifications")


@app.post("/api/notifications/mark-all-read", response_model=schemas.MessageResponse)
def mark_all_notifications_read(
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db)
):
    try:
        crud.mark_all_notifications_read(db, current_user.id)
        return {"message": "All notifications marked as read"}
    except Exception as e:
        logger.error(f"Error marking notifications as read: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to mark notifications as read")


@app.post("/api/notifications/{notification_id}/mark-read", response_model=schemas.NotificationResponse)
def mark_notification_read(
    notification_id: int,
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return crud.mark_notification_read(db, notification_id, current_user.id)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error marking notification {notification_id} as read: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to mark notification as read")


@app.get("/api/notification-preferences", response_model=schemas.NotificationPreferenceResponse)
def get_notification_preferences(
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return crud.get_notification_preferences(db, current_user.id)
    except Exception as e:
        logger.error(f"Error fetching notification preferences: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to fetch notification preferences")


@app.put("/api/notification-preferences", response_model=schemas.NotificationPreferenceResponse)
def update_notification_preferences(
    payload: schemas.NotificationPreferenceUpdate,
    current_user: User = Depends(auth.get_current_user),
    db: Session = Depends(get_db)
):
    try:
        return crud.update_notification_preferences(db, current_user.id, payload)
    except Exception as e:
        logger.error(f"Error updating notification preferences: {str(e)}")
        raise HTTPException(status_code=500, detail="Failed to update notification preferences")


# ---------------------------------------------------------
# REALTIME CHANNEL
# ---------------------------------------------------------

@app.websocket("/ws")
async def realtime_updates(websocket: WebSocket):
    """
    Live task updates and team performance. First frame must be
    {"userId": ..., "username": ...}.
    """
    await app.state.hub.handle(websocket)


# ---------------------------------------------------------
# ROOT CHECK
# ---------------------------------------------------------

@app.get("/")
def root():
    """
    Health check endpoint to verify the app is running.
    """
    hub = getattr(app.state, "hub", None)
    return {
        "message": f"{config.APP_NAME} is running",
        "status": "operational",
        "version": config.APP_VERSION,
        "active_connections": hub.connection_count if hub else 0
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.DEFAULT_HOST, port=config.DEFAULT_PORT)

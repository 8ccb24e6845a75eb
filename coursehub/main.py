import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from coursehub.config import CORS_ORIGINS, LOG_LEVEL, VERSION
from coursehub.database import create_indexes, get_db

from coursehub.admin.dashboard_router import router as dashboard_router
from coursehub.admin.user_router import router as admin_user_router
from coursehub.assignments.assignment_router import router as assignment_router
from coursehub.auth.auth_router import router as auth_router
from coursehub.catalog.category_router import router as category_router
from coursehub.catalog.course_router import router as course_router
from coursehub.catalog.curriculum_router import router as curriculum_router
from coursehub.catalog.faq_router import router as faq_router
from coursehub.catalog.public_router import router as public_router
from coursehub.enrollments.enrollment_router import router as enrollment_router
from coursehub.exams.attempt_router import router as exam_attempt_router
from coursehub.exams.exam_router import router as exam_router
from coursehub.exams.question_router import router as exam_question_router
from coursehub.progress.progress_router import router as progress_router
from coursehub.quizzes.quiz_router import router as quiz_router
from coursehub.reviews.admin_review_router import router as admin_review_router
from coursehub.reviews.lesson_review_router import router as lesson_review_router
from coursehub.reviews.review_router import router as review_router
from coursehub.system.health_router import router as health_router

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await create_indexes(await get_db())
    logger.info("CourseHub %s started", VERSION)
    yield


app = FastAPI(title="CourseHub Learning API", version=VERSION, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== ROUTER REGISTRATION ====================
app.include_router(auth_router)
app.include_router(category_router)
app.include_router(course_router)
app.include_router(curriculum_router)
app.include_router(public_router)
app.include_router(faq_router)
app.include_router(enrollment_router)
app.include_router(progress_router)
app.include_router(quiz_router)
app.include_router(review_router)
app.include_router(admin_review_router)
app.include_router(lesson_review_router)
app.include_router(assignment_router)
app.include_router(exam_question_router)
app.include_router(exam_router)
app.include_router(exam_attempt_router)
app.include_router(dashboard_router)
app.include_router(admin_user_router)
app.include_router(health_router)

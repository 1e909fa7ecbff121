from lms.extensions import db
from .base import (
    SoftDeleteMixin, TimestampMixin, RoleEnum, normalize_role, UserCategoryEnum,
    BatchStatusEnum, BATCH_PHASES, BatchCategoryEnum, ProcessStatusEnum, TemplateStatusEnum,
    RatingTypeEnum, AttendanceStatusEnum, RequestStatusEnum, QuestionTypeEnum, AudioStatusEnum,
)
from .Organization import Organization, Location, LineOfBusiness, Process
from .User import User, RolePermission, TokenBlocklist
from .Batch import BatchTemplate, Batch, UserBatchProcess, BatchHistory, PhaseChangeRequest
from .AttendanceRecord import AttendanceRecord
from .Evaluation import (
    EvaluationTemplate, EvaluationPillar, EvaluationParameter, Evaluation, EvaluationParameterResult,
)
from .Quiz import Question, QuizTemplate, Quiz, QuizAttempt
from .AudioFile import AudioFile, AudioFileAllocation
from .AuditLog import AuditLog

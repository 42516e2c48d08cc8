from achievement_tracker.repositories.achievement_contents import (
    InMemoryAchievementContentsRepository,
    MongoAchievementContentsRepository,
)
from achievement_tracker.repositories.achievement_references import (
    InMemoryAchievementReferencesRepository,
    PostgresAchievementReferencesRepository,
)
from achievement_tracker.repositories.lecturers import InMemoryLecturersRepository, PostgresLecturersRepository
from achievement_tracker.repositories.students import InMemoryStudentsRepository, PostgresStudentsRepository

__all__ = [
    "InMemoryAchievementContentsRepository",
    "MongoAchievementContentsRepository",
    "InMemoryAchievementReferencesRepository",
    "PostgresAchievementReferencesRepository",
    "InMemoryLecturersRepository",
    "PostgresLecturersRepository",
    "InMemoryStudentsRepository",
    "PostgresStudentsRepository",
]

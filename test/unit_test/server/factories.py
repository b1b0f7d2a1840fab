"""Builders persisting the rows the server tests start from."""

from datetime import timedelta
from typing import Dict, Iterable, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from evaldesk.core.database.base import utc_now
from evaldesk.core.database.entities import (
    Evaluation,
    EvaluationToQuestion,
    Group,
    Question,
    User,
    UserOnGroup,
    UserSession,
)
from evaldesk.core.database.schemas.questions import default_type_specific
from evaldesk.core.models import EvaluationPhase, QuestionSource, QuestionType, Role

API = "/api/v1"


def bearer(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def create_user(
    session: AsyncSession, email: str, roles: Iterable[Role] = (Role.STUDENT,), name: Optional[str] = None
) -> Tuple[User, str]:
    """Persist a user with an open session; returns the user and its session token."""
    user = User(email=email, name=name or email.split("@")[0], roles=[role.value for role in roles])
    session.add(user)
    await session.flush()
    token = f"token-{email}"
    session.add(UserSession(session_token=token, user_id=user.id, expires=utc_now() + timedelta(hours=1)))
    await session.commit()
    return user, token


async def create_group(session: AsyncSession, scope: str, *members: User) -> Group:
    group = Group(label=scope.upper(), scope=scope, created_by_id=members[0].id)
    session.add(group)
    await session.flush()
    for index, member in enumerate(members):
        session.add(UserOnGroup(user_id=member.id, group_id=group.id, selected=index == 0))
    await session.commit()
    return group


async def create_question(
    session: AsyncSession,
    group: Group,
    question_type: QuestionType = QuestionType.trueFalse,
    title: str = "Question",
    type_specific: Optional[dict] = None,
    source: QuestionSource = QuestionSource.BANK,
) -> Question:
    question = Question(
        group_id=group.id,
        type=question_type,
        title=title,
        content=f"Statement of {title}",
        source=source,
        type_specific=type_specific if type_specific is not None else default_type_specific(question_type),
    )
    session.add(question)
    await session.commit()
    return question


async def create_evaluation(
    session: AsyncSession,
    group: Group,
    label: str = "Midterm",
    phase: EvaluationPhase = EvaluationPhase.DRAFT,
    questions: Iterable[Tuple[Question, float]] = (),
    **settings,
) -> Evaluation:
    evaluation = Evaluation(group_id=group.id, label=label, phase=phase, **settings)
    session.add(evaluation)
    await session.flush()
    for order, (question, points) in enumerate(questions):
        session.add(
            EvaluationToQuestion(
                evaluation_id=evaluation.id,
                question_id=question.id,
                order=order,
                points=points,
                grading_points=points,
                title=question.title,
            )
        )
    await session.commit()
    return evaluation

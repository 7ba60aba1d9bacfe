import logging

from pydantic import BaseModel, ConfigDict, Field

from utils.errors import translate_storage_errors


logger = logging.getLogger(__name__)


class UserStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    questions_count: int = Field(0, alias="questionsCount")
    answers_count: int = Field(0, alias="answersCount")
    total_upvotes: int = Field(0, alias="totalUpvotes")


@translate_storage_errors
async def user_stats(db, user_id: str) -> UserStats:
    """
    Count a user's questions and answers, and the upvotes on their questions.

    Upvotes received on the user's answers are not part of ``total_upvotes``.
    Each figure is its own query, so the three may straddle concurrent writes.
    """
    questions_count = await db.questions.count_documents({"author": user_id})
    answers_count = await db.answers.count_documents({"author": user_id})

    upvote_totals = await db.questions.aggregate([
        {"$match": {"author": user_id}},
        {"$project": {"upvote_count": {"$size": "$upvotes"}}},
        {"$group": {"_id": None, "total": {"$sum": "$upvote_count"}}},
    ]).to_list(None)
    total_upvotes = upvote_totals[0]["total"] if upvote_totals else 0

    logger.debug("Stats for %s: %s questions, %s answers, %s upvotes",
                 user_id, questions_count, answers_count, total_upvotes)
    return UserStats(
        questions_count=questions_count,
        answers_count=answers_count,
        total_upvotes=total_upvotes,
    )

"""MongoDB persistence for users, questions and answers.

Answers live in their own collection keyed by ``question_id``; a question is
hydrated with its answers (oldest first) and every author is resolved to a
username before it leaves the store.
"""
import logging
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
import pymongo.errors

from utils.errors import NotFoundError, ValidationError, translate_storage_errors
from utils.votes import Direction, VoteTally, atomic_vote_plan, normalize_vote_sets, popularity_score


logger = logging.getLogger(__name__)

SORT_RECENT = "recent"
SORT_POPULAR = "popular"

RECENT_ORDER = [("created_at", DESCENDING), ("_id", DESCENDING)]


def utcnow():
    return datetime.now(timezone.utc)


async def ensure_indexes(db):
    """Create unique constraints and query indexes"""
    await db.users.create_index("username", unique=True)
    await db.users.create_index("email", unique=True)
    await db.users.create_index("user_id", unique=True)

    await db.questions.create_index("question_id", unique=True)
    await db.questions.create_index([("created_at", DESCENDING)])
    await db.questions.create_index([("author", ASCENDING)])

    await db.answers.create_index("answer_id", unique=True)
    await db.answers.create_index([("question_id", ASCENDING), ("created_at", ASCENDING)])
    await db.answers.create_index([("author", ASCENDING)])
    logger.info("Database indexes ensured")


@dataclass(frozen=True)
class ItemRef:
    """Points at a votable item: a question, or an answer under a question"""
    question_id: str
    answer_id: Optional[str] = None

    @property
    def is_answer(self) -> bool:
        return self.answer_id is not None

    def collection(self, db):
        return db.answers if self.is_answer else db.questions

    def filter(self) -> dict:
        if self.is_answer:
            return {"answer_id": self.answer_id, "question_id": self.question_id}
        return {"question_id": self.question_id}


class UserStore:
    def __init__(self, db):
        self.db = db

    @translate_storage_errors
    async def create_user(self, username: str, email: str, password_hash: str) -> dict:
        existing = await self.db.users.find_one({"$or": [{"email": email}, {"username": username}]})
        if existing:
            raise ValidationError("User already exists")

        user_doc = {
            "user_id": str(uuid.uuid4()),
            "username": username,
            "email": email,
            "password": password_hash,
            "created_at": utcnow(),
        }
        try:
            await self.db.users.insert_one(user_doc)
        except pymongo.errors.DuplicateKeyError:
            raise ValidationError("User already exists")
        logger.info("Registered user %s", username)
        return user_doc

    @translate_storage_errors
    async def get_user(self, user_id: str) -> Optional[dict]:
        return await self.db.users.find_one({"user_id": user_id})

    @translate_storage_errors
    async def find_by_email(self, email: str) -> Optional[dict]:
        return await self.db.users.find_one({"email": email})


class QuestionStore:
    def __init__(self, db):
        self.db = db

    ##########
    # Hydration
    ##########
    async def _usernames(self, user_ids) -> Dict[str, str]:
        ids = list(set(user_ids))
        if not ids:
            return {}
        users = await self.db.users.find({"user_id": {"$in": ids}}).to_list(None)
        return {u["user_id"]: u["username"] for u in users}

    async def _hydrate(self, questions: List[dict]) -> List[dict]:
        """Attach answers and author names to question documents"""
        if not questions:
            return questions

        question_ids = [q["question_id"] for q in questions]
        answers = await self.db.answers.find(
            {"question_id": {"$in": question_ids}}
        ).sort([("created_at", ASCENDING), ("_id", ASCENDING)]).to_list(None)

        names = await self._usernames(
            [q["author"] for q in questions] + [a["author"] for a in answers]
        )

        by_question = {qid: [] for qid in question_ids}
        for answer in answers:
            answer["author_name"] = names.get(answer["author"])
            by_question[answer["question_id"]].append(answer)

        for question in questions:
            question["author_name"] = names.get(question["author"])
            question["answers"] = by_question[question["question_id"]]
        return questions

    ##########
    # Questions
    ##########
    @translate_storage_errors
    async def create_question(self, author_id: str, title: str, content: str) -> dict:
        now = utcnow()
        question_doc = {
            "question_id": str(uuid.uuid4()),
            "title": title,
            "content": content,
            "author": author_id,
            "created_at": now,
            "updated_at": now,
            "upvotes": [],
            "downvotes": [],
        }
        await self.db.questions.insert_one(question_doc)
        logger.info("Question %s created by %s", question_doc["question_id"], author_id)
        return (await self._hydrate([question_doc]))[0]

    @translate_storage_errors
    async def get_question(self, question_id: str) -> dict:
        question = await self.db.questions.find_one({"question_id": question_id})
        if not question:
            raise NotFoundError("Question not found")
        return (await self._hydrate([question]))[0]

    @translate_storage_errors
    async def list_questions(self, sort: str = SORT_RECENT) -> List[dict]:
        """
        List every question.

        ``recent`` is newest first. ``popular`` orders by popularity score
        (upvotes minus downvotes), falling back to recency on ties.
        """
        questions = await self.db.questions.find().sort(RECENT_ORDER).to_list(None)
        if sort == SORT_POPULAR:
            # list.sort is stable, so equal scores stay newest first
            questions.sort(key=popularity_score, reverse=True)
        return await self._hydrate(questions)

    @translate_storage_errors
    async def list_questions_by_author(self, author_id: str) -> List[dict]:
        questions = await self.db.questions.find({"author": author_id}).sort(RECENT_ORDER).to_list(None)
        return await self._hydrate(questions)

    @translate_storage_errors
    async def find_by_text(self, query: str) -> List[dict]:
        """Case-insensitive substring scan over title and content"""
        pattern = {"$regex": re.escape(query), "$options": "i"}
        questions = await self.db.questions.find(
            {"$or": [{"title": pattern}, {"content": pattern}]}
        ).sort(RECENT_ORDER).to_list(None)
        return await self._hydrate(questions)

    ##########
    # Answers
    ##########
    @translate_storage_errors
    async def append_answer(self, question_id: str, author_id: str, content: str) -> dict:
        if not await self.db.questions.find_one({"question_id": question_id}, {"_id": 1}):
            raise NotFoundError("Question not found")

        answer_doc = {
            "answer_id": str(uuid.uuid4()),
            "question_id": question_id,
            "content": content,
            "author": author_id,
            "created_at": utcnow(),
            "upvotes": [],
            "downvotes": [],
        }
        await self.db.answers.insert_one(answer_doc)
        await self.db.questions.update_one(
            {"question_id": question_id}, {"$set": {"updated_at": answer_doc["created_at"]}}
        )
        answer_doc["author_name"] = (await self._usernames([author_id])).get(author_id)
        return answer_doc

    @translate_storage_errors
    async def get_answer(self, question_id: str, answer_id: str) -> dict:
        answer = await self.db.answers.find_one({"answer_id": answer_id, "question_id": question_id})
        if not answer:
            raise NotFoundError("Answer not found")
        return answer

    ##########
    # Votes
    ##########
    async def _missing_item(self, ref: ItemRef):
        if ref.is_answer and await self.db.questions.find_one({"question_id": ref.question_id}, {"_id": 1}):
            return NotFoundError("Answer not found")
        return NotFoundError("Question not found")

    @translate_storage_errors
    async def cast_vote(self, ref: ItemRef, user_id: str, direction: Direction) -> VoteTally:
        """
        Toggle a user's vote on a question or answer.

        Runs the ledger's conditional updates in order; each one is a single
        atomic document update, so concurrent voters never overwrite each
        other's list changes.
        """
        collection = ref.collection(self.db)
        for extra_filter, update in atomic_vote_plan(user_id, direction):
            item = await collection.find_one_and_update(
                {**ref.filter(), **extra_filter},
                update,
                return_document=ReturnDocument.AFTER,
            )
            if item is not None:
                tally = VoteTally.from_item(item, user_id)
                logger.debug("Vote on %s by %s now %s", ref, user_id, tally.user_vote)
                return tally
        raise await self._missing_item(ref)

    @translate_storage_errors
    async def update_votes(self, ref: ItemRef, upvotes, downvotes) -> VoteTally:
        """Overwrite both vote lists of an item"""
        ups, downs = normalize_vote_sets(upvotes, downvotes)
        item = await ref.collection(self.db).find_one_and_update(
            ref.filter(),
            {"$set": {"upvotes": ups, "downvotes": downs}},
            return_document=ReturnDocument.AFTER,
        )
        if item is None:
            raise await self._missing_item(ref)
        return VoteTally.from_item(item)

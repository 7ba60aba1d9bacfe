"""
Tests for the MongoDB-backed question and user stores.
"""

import pytest

from utils.errors import NotFoundError, ValidationError
from utils.store import ItemRef, SORT_POPULAR, SORT_RECENT
from utils.votes import Direction


class TestUserStore:

    @pytest.mark.asyncio
    async def test_create_and_fetch(self, user_store):
        user = await user_store.create_user("alice", "alice@fastqa.io", "hash")

        assert await user_store.get_user(user["user_id"]) is not None
        assert (await user_store.find_by_email("alice@fastqa.io"))["username"] == "alice"

    @pytest.mark.asyncio
    async def test_duplicate_username_rejected(self, user_store):
        await user_store.create_user("alice", "alice@fastqa.io", "hash")

        with pytest.raises(ValidationError):
            await user_store.create_user("alice", "other@fastqa.io", "hash")

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, user_store):
        await user_store.create_user("alice", "alice@fastqa.io", "hash")

        with pytest.raises(ValidationError):
            await user_store.create_user("bob", "alice@fastqa.io", "hash")


class TestQuestions:

    @pytest.mark.asyncio
    async def test_create_question_hydrates_author(self, question_store, make_user):
        alice = await make_user("alice")

        question = await question_store.create_question(alice["user_id"], "Title", "Body")

        assert question["author_name"] == "alice"
        assert question["answers"] == []
        assert question["upvotes"] == [] and question["downvotes"] == []

    @pytest.mark.asyncio
    async def test_get_missing_question(self, question_store):
        with pytest.raises(NotFoundError, match="Question not found"):
            await question_store.get_question("nope")

    @pytest.mark.asyncio
    async def test_recent_is_newest_first(self, question_store, make_user):
        alice = await make_user("alice")
        first = await question_store.create_question(alice["user_id"], "First", "a")
        second = await question_store.create_question(alice["user_id"], "Second", "b")

        questions = await question_store.list_questions(SORT_RECENT)

        assert [q["question_id"] for q in questions] == [second["question_id"], first["question_id"]]

    @pytest.mark.asyncio
    async def test_popular_orders_by_score(self, question_store, make_user):
        """5 up / 1 down (score 4) ranks above 2 up / 0 down (score 2)."""
        alice = await make_user("alice")
        q1 = await question_store.create_question(alice["user_id"], "Q1", "a")
        q2 = await question_store.create_question(alice["user_id"], "Q2", "b")
        await question_store.update_votes(ItemRef(q1["question_id"]), ["u1", "u2", "u3", "u4", "u5"], ["u6"])
        await question_store.update_votes(ItemRef(q2["question_id"]), ["u1", "u2"], [])

        questions = await question_store.list_questions(SORT_POPULAR)

        assert [q["question_id"] for q in questions] == [q1["question_id"], q2["question_id"]]

    @pytest.mark.asyncio
    async def test_popular_ignores_raw_upvote_count(self, question_store, make_user):
        """More upvotes but a lower score must not rank first."""
        alice = await make_user("alice")
        many = await question_store.create_question(alice["user_id"], "Many", "a")
        few = await question_store.create_question(alice["user_id"], "Few", "b")
        await question_store.update_votes(ItemRef(many["question_id"]), ["u1", "u2", "u3"], ["u4", "u5", "u6"])
        await question_store.update_votes(ItemRef(few["question_id"]), ["u1"], [])

        questions = await question_store.list_questions(SORT_POPULAR)

        assert questions[0]["question_id"] == few["question_id"]

    @pytest.mark.asyncio
    async def test_list_by_author(self, question_store, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        await question_store.create_question(alice["user_id"], "Alice asks", "a")
        await question_store.create_question(bob["user_id"], "Bob asks", "b")

        questions = await question_store.list_questions_by_author(bob["user_id"])

        assert [q["title"] for q in questions] == ["Bob asks"]


class TestSearch:

    @pytest.mark.asyncio
    async def test_title_match_is_case_insensitive(self, question_store, make_user):
        alice = await make_user("alice")
        question = await question_store.create_question(alice["user_id"], "How do Python generators work?", "body")

        results = await question_store.find_by_text("PYTHON GEN")

        assert [q["question_id"] for q in results] == [question["question_id"]]

    @pytest.mark.asyncio
    async def test_content_match(self, question_store, make_user):
        alice = await make_user("alice")
        await question_store.create_question(alice["user_id"], "Title", "Mentions asyncio deep inside")

        assert len(await question_store.find_by_text("asyncio")) == 1

    @pytest.mark.asyncio
    async def test_no_match_is_empty(self, question_store, make_user):
        alice = await make_user("alice")
        await question_store.create_question(alice["user_id"], "Title", "Body")

        assert await question_store.find_by_text("kubernetes") == []

    @pytest.mark.asyncio
    async def test_regex_characters_are_literal(self, question_store, make_user):
        alice = await make_user("alice")
        await question_store.create_question(alice["user_id"], "What does a+b mean?", "Body")
        await question_store.create_question(alice["user_id"], "aab", "Body")

        results = await question_store.find_by_text("a+b")

        assert [q["title"] for q in results] == ["What does a+b mean?"]


class TestAnswers:

    @pytest.mark.asyncio
    async def test_append_answer_attaches_to_question(self, question_store, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        question = await question_store.create_question(alice["user_id"], "Title", "Body")

        first = await question_store.append_answer(question["question_id"], bob["user_id"], "First answer")
        second = await question_store.append_answer(question["question_id"], alice["user_id"], "Second answer")

        hydrated = await question_store.get_question(question["question_id"])
        assert [a["answer_id"] for a in hydrated["answers"]] == [first["answer_id"], second["answer_id"]]
        assert hydrated["answers"][0]["author_name"] == "bob"
        assert first["question_id"] == question["question_id"]

    @pytest.mark.asyncio
    async def test_append_to_missing_question(self, question_store, make_user):
        alice = await make_user("alice")

        with pytest.raises(NotFoundError, match="Question not found"):
            await question_store.append_answer("nope", alice["user_id"], "text")

    @pytest.mark.asyncio
    async def test_answer_lookup_is_scoped_to_question(self, question_store, make_user):
        alice = await make_user("alice")
        q1 = await question_store.create_question(alice["user_id"], "Q1", "a")
        q2 = await question_store.create_question(alice["user_id"], "Q2", "b")
        answer = await question_store.append_answer(q1["question_id"], alice["user_id"], "text")

        with pytest.raises(NotFoundError, match="Answer not found"):
            await question_store.get_answer(q2["question_id"], answer["answer_id"])


class TestCastVote:

    @pytest.mark.asyncio
    async def test_question_toggle_and_switch(self, question_store, make_user):
        alice = await make_user("alice")
        question = await question_store.create_question(alice["user_id"], "Title", "Body")
        ref = ItemRef(question["question_id"])

        tally = await question_store.cast_vote(ref, "voter", Direction.UPVOTE)
        assert (tally.upvotes, tally.downvotes, tally.user_vote) == (1, 0, Direction.UPVOTE)

        tally = await question_store.cast_vote(ref, "voter", Direction.DOWNVOTE)
        assert (tally.upvotes, tally.downvotes, tally.user_vote) == (0, 1, Direction.DOWNVOTE)

        tally = await question_store.cast_vote(ref, "voter", Direction.DOWNVOTE)
        assert (tally.upvotes, tally.downvotes, tally.user_vote) == (0, 0, None)

        stored = await question_store.get_question(question["question_id"])
        assert stored["upvotes"] == [] and stored["downvotes"] == []

    @pytest.mark.asyncio
    async def test_votes_from_different_users_accumulate(self, question_store, make_user):
        alice = await make_user("alice")
        question = await question_store.create_question(alice["user_id"], "Title", "Body")
        ref = ItemRef(question["question_id"])

        await question_store.cast_vote(ref, "u1", Direction.UPVOTE)
        await question_store.cast_vote(ref, "u2", Direction.UPVOTE)
        tally = await question_store.cast_vote(ref, "u3", Direction.DOWNVOTE)

        assert tally.score == 1
        stored = await question_store.get_question(question["question_id"])
        assert sorted(stored["upvotes"]) == ["u1", "u2"]
        assert stored["downvotes"] == ["u3"]

    @pytest.mark.asyncio
    async def test_answer_vote(self, question_store, make_user):
        alice = await make_user("alice")
        question = await question_store.create_question(alice["user_id"], "Title", "Body")
        answer = await question_store.append_answer(question["question_id"], alice["user_id"], "text")
        ref = ItemRef(question["question_id"], answer["answer_id"])

        tally = await question_store.cast_vote(ref, "voter", Direction.UPVOTE)

        assert tally.upvotes == 1
        stored = await question_store.get_answer(question["question_id"], answer["answer_id"])
        assert stored["upvotes"] == ["voter"]
        # the parent question's own votes are untouched
        assert (await question_store.get_question(question["question_id"]))["upvotes"] == []

    @pytest.mark.asyncio
    async def test_vote_on_missing_question(self, question_store):
        with pytest.raises(NotFoundError, match="Question not found"):
            await question_store.cast_vote(ItemRef("nope"), "voter", Direction.UPVOTE)

    @pytest.mark.asyncio
    async def test_vote_on_missing_answer(self, question_store, make_user):
        alice = await make_user("alice")
        question = await question_store.create_question(alice["user_id"], "Title", "Body")

        with pytest.raises(NotFoundError, match="Answer not found"):
            await question_store.cast_vote(ItemRef(question["question_id"], "nope"), "voter", Direction.UPVOTE)

    @pytest.mark.asyncio
    async def test_update_votes_enforces_exclusion(self, question_store, make_user):
        alice = await make_user("alice")
        question = await question_store.create_question(alice["user_id"], "Title", "Body")

        tally = await question_store.update_votes(ItemRef(question["question_id"]), ["a", "a", "b"], ["b", "c"])

        assert (tally.upvotes, tally.downvotes) == (2, 1)

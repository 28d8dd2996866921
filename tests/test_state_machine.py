"""
Tests for round transitions, ratings and AI profile feedback.

Run with:
    python -m pytest tests/test_state_machine.py
"""
import unittest
from datetime import date

from letter_rounds import ai_profile, state_machine
from letter_rounds.adapters import MemoryCache, MemoryRemoteStore
from letter_rounds.models import AIProfile, Idea, LetterRound, RoundStatus, aggregate_rating
from letter_rounds.round_store import RoundStore
from letter_rounds.state_machine import RoundStateMachine

ALICE = "alice@example.com"
BOB = "bob@example.com"
CAROL = "carol@example.com"
DAY = date(2026, 11, 7)


def _round(**fields) -> LetterRound:
    fields.setdefault("letter", "A")
    fields.setdefault("proposer_user_id", ALICE)
    return LetterRound(**fields)


def _done(**fields) -> LetterRound:
    return _round(proposal_text="Aquarium", target_date=DAY, status=RoundStatus.DONE, **fields)


# ---------------------------------------------------------------------------
# Proposal, date, notes
# ---------------------------------------------------------------------------

class TestProposal(unittest.TestCase):

    def test_typing_a_proposal_moves_to_draft(self):
        updated = state_machine.edit_proposal(_round(), ALICE, "Aquarium")
        self.assertEqual(updated.status, RoundStatus.DRAFT)
        self.assertEqual(updated.proposal_text, "Aquarium")

    def test_clearing_the_proposal_moves_back(self):
        draft = state_machine.edit_proposal(_round(), ALICE, "Aquarium", tags=["Nature"])
        cleared = state_machine.edit_proposal(draft, ALICE, "   ")
        self.assertEqual(cleared.status, RoundStatus.NOT_STARTED)
        self.assertIsNone(cleared.proposal_text)
        self.assertEqual(cleared.idea_tags, [])

    def test_only_proposer_edits(self):
        self.assertIsNone(state_machine.edit_proposal(_round(), BOB, "Archery"))
        self.assertIsNone(state_machine.edit_proposal(_round(), "", "Archery"))

    def test_proposer_match_ignores_case(self):
        self.assertIsNotNone(state_machine.edit_proposal(_round(), "ALICE@example.com", "Archery"))

    def test_planned_round_can_be_reworded_not_emptied(self):
        planned = _round(proposal_text="Aquarium", target_date=DAY, status=RoundStatus.PLANNED)
        reworded = state_machine.edit_proposal(planned, ALICE, "Aquarium visit")
        self.assertEqual(reworded.status, RoundStatus.PLANNED)
        self.assertIsNone(state_machine.edit_proposal(planned, ALICE, ""))

    def test_done_round_is_frozen(self):
        self.assertIsNone(state_machine.edit_proposal(_done(), ALICE, "Archery"))
        self.assertIsNone(state_machine.set_date(_done(), ALICE, DAY))

    def test_select_idea_sets_title_and_tags(self):
        idea = Idea(id="x", title="Archery", tags=["Sport", "Adventure"])
        updated = state_machine.select_idea(_round(), ALICE, idea)
        self.assertEqual(updated.proposal_text, "Archery")
        self.assertEqual(updated.idea_tags, ["Sport", "Adventure"])
        self.assertEqual(updated.status, RoundStatus.DRAFT)

    def test_set_and_clear_date(self):
        dated = state_machine.set_date(_round(), ALICE, DAY)
        self.assertEqual(dated.target_date, DAY)
        self.assertIsNone(state_machine.set_date(dated, ALICE, None).target_date)

    def test_planned_round_keeps_its_date(self):
        planned = _round(proposal_text="Aquarium", target_date=DAY, status=RoundStatus.PLANNED)
        self.assertIsNone(state_machine.set_date(planned, ALICE, None))
        self.assertEqual(state_machine.set_date(planned, ALICE, date(2026, 12, 1)).target_date, date(2026, 12, 1))

    def test_notes_by_proposer_only(self):
        self.assertEqual(state_machine.set_notes(_round(), ALICE, "bring cash").notes, "bring cash")
        self.assertIsNone(state_machine.set_notes(_round(), BOB, "bring cash"))

    def test_every_change_stamps_updated_at(self):
        round_ = _round()
        updated = state_machine.edit_proposal(round_, ALICE, "Aquarium")
        self.assertGreaterEqual(updated.updated_at, round_.updated_at)
        self.assertIsNot(updated, round_)


# ---------------------------------------------------------------------------
# Finalize, complete, reset
# ---------------------------------------------------------------------------

class TestLifecycle(unittest.TestCase):

    def test_finalize_needs_proposal_and_date(self):
        self.assertIsNone(state_machine.finalize(_round(target_date=DAY), ALICE))
        self.assertIsNone(state_machine.finalize(_round(proposal_text="Aquarium", status=RoundStatus.DRAFT), ALICE))

        ready = _round(proposal_text="Aquarium", target_date=DAY, status=RoundStatus.DRAFT)
        planned = state_machine.finalize(ready, ALICE)
        self.assertEqual(planned.status, RoundStatus.PLANNED)

    def test_finalize_twice_is_refused(self):
        ready = _round(proposal_text="Aquarium", target_date=DAY, status=RoundStatus.DRAFT)
        planned = state_machine.finalize(ready, ALICE)
        self.assertIsNone(state_machine.finalize(planned, ALICE))

    def test_finalize_by_other_member_refused(self):
        ready = _round(proposal_text="Aquarium", target_date=DAY, status=RoundStatus.DRAFT)
        self.assertIsNone(state_machine.finalize(ready, BOB))

    def test_mark_complete_only_from_planned(self):
        planned = _round(proposal_text="Aquarium", target_date=DAY, status=RoundStatus.PLANNED)
        self.assertEqual(state_machine.mark_complete(planned, ALICE).status, RoundStatus.DONE)
        self.assertIsNone(state_machine.mark_complete(_round(status=RoundStatus.DRAFT, proposal_text="x"), ALICE))
        self.assertIsNone(state_machine.mark_complete(planned, BOB))

    def test_reset_clears_everything(self):
        busy = _round(proposal_text="Aquarium", target_date=DAY, status=RoundStatus.PLANNED, notes="n")
        cleared = state_machine.reset(busy, ALICE)
        self.assertEqual(cleared.status, RoundStatus.NOT_STARTED)
        self.assertIsNone(cleared.proposal_text)
        self.assertIsNone(cleared.target_date)
        self.assertIsNone(cleared.notes)
        self.assertEqual(cleared.proposer_user_id, ALICE)
        self.assertEqual(cleared.created_at, busy.created_at)

    def test_reset_by_non_proposer_refused(self):
        self.assertIsNone(state_machine.reset(_round(status=RoundStatus.DRAFT, proposal_text="x"), BOB))

    def test_reset_done_round_rated_by_others_needs_admin(self):
        done = _done(ratings={BOB: 4}, rating=4.0)
        self.assertIsNone(state_machine.reset(done, ALICE))
        self.assertIsNotNone(state_machine.reset(done, CAROL, is_admin=True))

    def test_proposer_may_reset_unconfirmed_done_round(self):
        done = _done(ratings={ALICE: 5}, rating=5.0)
        self.assertEqual(state_machine.reset(done, ALICE).status, RoundStatus.NOT_STARTED)


# ---------------------------------------------------------------------------
# Ratings and post-completion fields
# ---------------------------------------------------------------------------

class TestRatings(unittest.TestCase):

    def test_aggregate_is_mean(self):
        self.assertIsNone(aggregate_rating({}))
        self.assertEqual(aggregate_rating({"a": 5, "b": 3}), 4.0)

    def test_rating_order_independent_and_idempotent(self):
        first = state_machine.rate(state_machine.rate(_done(), ALICE, 5), BOB, 3)
        second = state_machine.rate(state_machine.rate(_done(), BOB, 3), ALICE, 5)
        self.assertEqual(first.rating, 4.0)
        self.assertEqual(second.rating, 4.0)

        again = state_machine.rate(first, ALICE, 5)
        self.assertEqual(again.rating, 4.0)
        self.assertEqual(len(again.ratings), 2)

    def test_rating_only_when_done(self):
        planned = _round(proposal_text="Aquarium", target_date=DAY, status=RoundStatus.PLANNED)
        self.assertIsNone(state_machine.rate(planned, BOB, 4))

    def test_rating_out_of_range_refused(self):
        for bad in (0, 6, -1, True, 4.5, "5"):
            self.assertIsNone(state_machine.rate(_done(), BOB, bad))

    def test_retrospective_and_images_after_done(self):
        done = _done()
        self.assertEqual(state_machine.set_retrospective(done, BOB, " Great fish ").evaluation_text, "Great fish")
        with_image = state_machine.add_image(done, BOB, "https://img/1.jpg")
        self.assertEqual(with_image.image_urls, ["https://img/1.jpg"])
        self.assertIs(state_machine.add_image(with_image, BOB, "https://img/1.jpg"), with_image)

        self.assertIsNone(state_machine.set_retrospective(_round(), BOB, "too early"))
        self.assertIsNone(state_machine.add_image(_round(), BOB, "https://img/2.jpg"))


class TestAIProfileFeedback(unittest.TestCase):

    def test_completion_pushes_recent_tags(self):
        profile = AIProfile(recent_tags=["Food", "Relax"])
        updated = ai_profile.record_completion(profile, ["Sport", "Food"])
        self.assertEqual(updated.recent_tags, ["Sport", "Food", "Relax"])

    def test_recent_tags_are_capped(self):
        profile = AIProfile(recent_tags=[f"t{i}" for i in range(10)])
        updated = ai_profile.record_completion(profile, ["new"])
        self.assertEqual(len(updated.recent_tags), ai_profile.MAX_RECENT_TAGS)
        self.assertEqual(updated.recent_tags[0], "new")

    def test_rating_buckets(self):
        liked = ai_profile.record_rating(AIProfile(), ["Food"], None, 5)
        self.assertEqual(liked.liked_tags, {"Food": 1})
        disliked = ai_profile.record_rating(AIProfile(), ["Food"], None, 1)
        self.assertEqual(disliked.disliked_tags, {"Food": 1})
        neutral = AIProfile()
        self.assertIs(ai_profile.record_rating(neutral, ["Food"], None, 3), neutral)

    def test_re_rating_replaces_previous_contribution(self):
        liked = ai_profile.record_rating(AIProfile(), ["Food"], None, 5)
        flipped = ai_profile.record_rating(liked, ["Food"], 5, 2)
        self.assertEqual(flipped.liked_tags, {})
        self.assertEqual(flipped.disliked_tags, {"Food": 1})


# ---------------------------------------------------------------------------
# Persisting machine
# ---------------------------------------------------------------------------

class TestRoundStateMachine(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        self.store = RoundStore(MemoryCache(), MemoryRemoteStore())
        await self.store.initialize_environment("env-1", [ALICE, BOB], ALICE)
        self.machine = RoundStateMachine(self.store)

    async def _complete_a(self):
        idea = Idea(id="a", title="Aquarium", tags=["Nature", "Culture"])
        await self.machine.select_idea("env-1", "A", ALICE, idea)
        await self.machine.set_date("env-1", "A", ALICE, DAY)
        await self.machine.finalize("env-1", "A", ALICE)
        return await self.machine.mark_complete("env-1", "A", ALICE)

    async def test_full_lifecycle_is_persisted(self):
        done = await self._complete_a()
        self.assertEqual(done.status, RoundStatus.DONE)
        stored = await self.store.get_round("env-1", "A")
        self.assertEqual(stored.status, RoundStatus.DONE)
        self.assertEqual(stored.target_date, DAY)

    async def test_refusal_writes_nothing(self):
        with self.assertLogs("letter_rounds.state_machine", level="INFO"):
            result = await self.machine.finalize("env-1", "A", ALICE)
        self.assertIsNone(result)
        self.assertEqual((await self.store.get_round("env-1", "A")).status, RoundStatus.NOT_STARTED)

    async def test_unknown_round_is_refused(self):
        self.assertIsNone(await self.machine.edit_proposal("nowhere", "A", ALICE, "x"))

    async def test_completion_feeds_recent_tags(self):
        await self._complete_a()
        profile = await self.store.get_ai_profile("env-1")
        self.assertEqual(profile.recent_tags, ["Nature", "Culture"])

    async def test_ratings_feed_liked_tags_once_per_participant(self):
        await self._complete_a()
        await self.machine.rate("env-1", "A", BOB, 5)
        await self.machine.rate("env-1", "A", BOB, 4)
        profile = await self.store.get_ai_profile("env-1")
        self.assertEqual(profile.liked_tags, {"Nature": 1, "Culture": 1})

        await self.machine.rate("env-1", "A", ALICE, 1)
        profile = await self.store.get_ai_profile("env-1")
        self.assertEqual(profile.disliked_tags, {"Nature": 1, "Culture": 1})
        self.assertEqual((await self.store.get_round("env-1", "A")).rating, 2.5)

    async def test_admin_reset_of_confirmed_round(self):
        await self._complete_a()
        await self.machine.rate("env-1", "A", BOB, 5)
        self.assertIsNone(await self.machine.reset("env-1", "A", ALICE))
        cleared = await self.machine.reset("env-1", "A", BOB, is_admin=True)
        self.assertEqual(cleared.status, RoundStatus.NOT_STARTED)
        self.assertEqual(cleared.ratings, {})


if __name__ == '__main__':
    unittest.main()

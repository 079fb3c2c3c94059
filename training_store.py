"""
Stroop Trainer — Training Store
Persistence collaborators for completed sessions.

The engine never calls these directly: the API hands a finished session's
rounds to save_session() and hydrates history with load_historical_rounds().
Failures surface as TrainingStoreError so callers can log them and move on.
"""

import threading
# Imports threading for the in-memory store's lock (auto-saves arrive on timer threads)

from typing import Dict, List, Sequence

from firebase_admin import firestore
# Imports Firestore helpers (query direction, server timestamps) from the Firebase Admin SDK

from loguru import logger

from stroop_engine import RoundResult

ROUNDS_COLLECTION = 'stroop_rounds'
# One document per recorded round

STATS_COLLECTION = 'stroop_stats'
# One aggregate document per user

DEFAULT_HISTORY_LIMIT = 100
# Matches how much history the stats page charts


class TrainingStoreError(Exception):
    """A persistence backend failed; the in-memory session is unaffected."""


class TrainingStore:
    def load_historical_rounds(self, user_id: str, limit: int = DEFAULT_HISTORY_LIMIT) -> List[RoundResult]:
        """Most recent rounds first."""
        raise NotImplementedError

    def save_session(self, user_id: str, rounds: Sequence[RoundResult], best_streak: int) -> None:
        raise NotImplementedError

    def load_user_stats(self, user_id: str) -> dict:
        """Lifetime aggregates: {'best_streak', 'total_rounds'}."""
        raise NotImplementedError


class InMemoryTrainingStore(TrainingStore):
    """Process-local store used when Firestore isn't configured (and in tests)."""

    def __init__(self):
        self._rounds: Dict[str, List[dict]] = {}
        self._stats: Dict[str, dict] = {}
        self._lock = threading.Lock()

    def load_historical_rounds(self, user_id, limit=DEFAULT_HISTORY_LIMIT):
        with self._lock:
            stored = list(self._rounds.get(str(user_id), []))
        stored.sort(key=lambda d: d['timestamp'], reverse=True)
        # Newest first, the same order the Firestore query returns
        return [RoundResult.from_dict(d) for d in stored[:limit]]

    def save_session(self, user_id, rounds, best_streak):
        user_id = str(user_id)
        with self._lock:
            self._rounds.setdefault(user_id, []).extend(r.to_dict() for r in rounds)
            stats = self._stats.setdefault(user_id, {'best_streak': 0, 'total_rounds': 0})
            stats['best_streak'] = max(stats['best_streak'], best_streak)
            stats['total_rounds'] += len(rounds)
            # Lifetime aggregates: best streak is a maximum, round count a sum over sessions
        logger.debug('stored {} rounds for {}', len(rounds), user_id)

    def load_user_stats(self, user_id):
        with self._lock:
            return dict(self._stats.get(str(user_id), {'best_streak': 0, 'total_rounds': 0}))


class FirestoreTrainingStore(TrainingStore):
    """
    Firestore-backed store.

    One document per round in `stroop_rounds` (flattened, keyed by user_id)
    and one aggregate document per user in `stroop_stats`.
    """

    def __init__(self, client):
        self.client = client
        # A firestore.client() instance from an initialized firebase_admin app

    @staticmethod
    def _round_to_doc(user_id: str, r: RoundResult) -> dict:
        return {
            'user_id': user_id,
            'challenge_id': r.challenge.id,
            'word': r.challenge.word.value,
            'ink_color': r.challenge.ink_color.value,
            'challenge_created_at': r.challenge.created_at,
            'selected_color': r.selected_color.value if r.selected_color else None,
            'outcome': r.outcome.value,
            'reaction_time_ms': r.reaction_time_ms,
            'timestamp': r.timestamp,
        }

    @staticmethod
    def _doc_to_round(doc: dict) -> RoundResult:
        return RoundResult.from_dict({
            'challenge': {
                'id': doc['challenge_id'],
                'word': doc['word'],
                'ink_color': doc['ink_color'],
                'created_at': doc.get('challenge_created_at', doc.get('timestamp', 0)),
            },
            'selected_color': doc.get('selected_color'),
            'outcome': doc['outcome'],
            'reaction_time_ms': doc['reaction_time_ms'],
            'timestamp': doc.get('timestamp', 0),
        })

    def load_historical_rounds(self, user_id, limit=DEFAULT_HISTORY_LIMIT):
        try:
            query = (
                self.client.collection(ROUNDS_COLLECTION)
                .where('user_id', '==', str(user_id))
                .order_by('timestamp', direction=firestore.Query.DESCENDING)
                .limit(limit)
            )
            return [self._doc_to_round(doc.to_dict()) for doc in query.stream()]
        except Exception as e:
            raise TrainingStoreError(f'loading rounds for {user_id} failed: {e}') from e
            # Network, permission and missing-index errors all surface as one store error

    def save_session(self, user_id, rounds, best_streak):
        user_id = str(user_id)
        try:
            batch = self.client.batch()
            rounds_ref = self.client.collection(ROUNDS_COLLECTION)
            for r in rounds:
                batch.set(rounds_ref.document(f'{user_id}_{r.challenge.id}'), self._round_to_doc(user_id, r))
                # Deterministic document ids make a retried save idempotent

            stats_ref = self.client.collection(STATS_COLLECTION).document(user_id)
            stats_doc = stats_ref.get()
            # Reads the current aggregates so the new session can be folded in
            stats = stats_doc.to_dict() if stats_doc.exists else {'best_streak': 0, 'total_rounds': 0}
            batch.set(stats_ref, {
                'user_id': user_id,
                'best_streak': max(stats.get('best_streak', 0), best_streak),
                'total_rounds': stats.get('total_rounds', 0) + len(rounds),
                'updated_at': firestore.SERVER_TIMESTAMP,
            }, merge=True)
            batch.commit()
            # Rounds and aggregates land together or not at all
        except Exception as e:
            raise TrainingStoreError(f'saving session for {user_id} failed: {e}') from e
        logger.debug('stored {} rounds for {} in Firestore', len(rounds), user_id)

    def load_user_stats(self, user_id):
        try:
            doc = self.client.collection(STATS_COLLECTION).document(str(user_id)).get()
        except Exception as e:
            raise TrainingStoreError(f'loading stats for {user_id} failed: {e}') from e
        data = doc.to_dict() if doc.exists else {}
        return {
            'best_streak': data.get('best_streak', 0),
            'total_rounds': data.get('total_rounds', 0),
        }

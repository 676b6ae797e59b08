from semantic_indexer.index_state import FileIndexRecord, IndexStateStore
from semantic_indexer.status import RepoIndexState


class TestFileHashes:
    def test_absent_by_default(self, state_store):
        assert state_store.get_file_hash("a.py") is None
        assert state_store.get_file_record("a.py") is None

    def test_update_and_read(self, state_store):
        state_store.update_file_hash("a.py", "abc", "rev-1")

        assert state_store.get_file_hash("a.py") == "abc"
        assert state_store.get_file_record("a.py") == FileIndexRecord("a.py", "abc", "rev-1")

    def test_overwrite(self, state_store):
        state_store.update_file_hash("a.py", "abc", "rev-1")
        state_store.update_file_hash("a.py", "def", "rev-2")

        assert state_store.get_file_record("a.py") == FileIndexRecord("a.py", "def", "rev-2")

    def test_remove(self, state_store):
        state_store.update_file_hash("a.py", "abc")
        state_store.remove_file_hash("a.py")

        assert state_store.get_file_hash("a.py") is None

    def test_persists_across_instances(self, tmp_path):
        db_path = str(tmp_path / "nested" / "dir" / "index_state.db")
        IndexStateStore(db_path).update_file_hash("a.py", "abc")

        assert IndexStateStore(db_path).get_file_hash("a.py") == "abc"


class TestLastIndexedTimestamp:
    def test_absent_by_default(self, state_store):
        assert state_store.get_last_indexed_timestamp() is None

    def test_update(self, state_store):
        state_store.update_last_indexed_timestamp(1700000000.5)

        assert state_store.get_last_indexed_timestamp() == 1700000000.5

    def test_defaults_to_now(self, state_store):
        state_store.update_last_indexed_timestamp()

        assert state_store.get_last_indexed_timestamp() > 0

    def test_clear_resets_timestamp_but_keeps_hashes(self, state_store):
        state_store.update_file_hash("a.py", "abc")
        state_store.update_last_indexed_timestamp()

        state_store.clear_index()

        assert state_store.get_last_indexed_timestamp() is None
        assert state_store.get_file_hash("a.py") == "abc"


class TestRepoState:
    def test_round_trip(self, state_store):
        state_store.update_repo_state(RepoIndexState("repo", 12, "abc123"))

        assert state_store.get_repo_state("repo") == RepoIndexState("repo", 12, "abc123")
        assert state_store.get_repo_state("other") is None

    def test_remove(self, state_store):
        state_store.update_repo_state(RepoIndexState("repo", 12, None))
        state_store.remove_repo_state("repo")

        assert state_store.get_repo_state("repo") is None

"""Cache invalidation rules for each kind of write."""

from janvani.api import invalidation_paths


class TestInvalidationPaths:
    def test_item_action_covers_both_ids_list_and_stats(self):
        paths = invalidation_paths("/complaints/abc123/resolve", aliases=("JV-2026-00002",))
        assert paths == ("/complaints/abc123", "/complaints/JV-2026-00002", "/complaints", "/complaints/stats")

    def test_delete_covers_item_list_and_stats(self):
        assert invalidation_paths("/complaints/abc123") == ("/complaints/abc123", "/complaints", "/complaints/stats")

    def test_create_covers_list_and_stats(self):
        assert invalidation_paths("/complaints") == ("/complaints", "/complaints/stats")

    def test_profile_changes(self):
        assert set(invalidation_paths("/users/me/password")) == {"/users/me", "/auth/me", "/users/leaderboard", "/users"}

    def test_auth_changes(self):
        assert invalidation_paths("/auth/reset-password") == ("/auth/me",)

import os
import sys
from unittest.mock import MagicMock, patch

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tools.store import RedisStore

class TestRedisStore:

    def test_memory_mode_without_url(self):
        with patch.dict(os.environ, {}, clear=True):
            store = RedisStore()

        assert store.r is None
        store.set("funnel_sessions", "[]")
        assert store.get("funnel_sessions") == "[]"
        assert store.delete("funnel_sessions") is True
        assert store.get("funnel_sessions") is None

    @patch("tools.store.redis.from_url")
    def test_falls_back_when_redis_unreachable(self, mock_from_url):
        mock_from_url.return_value.ping.side_effect = ConnectionError("refused")

        store = RedisStore(redis_url="redis://localhost:6379")

        assert store.r is None
        store.set("k", "v")
        assert store.get("k") == "v"

    @patch("tools.store.redis.from_url")
    def test_keys_are_namespaced(self, mock_from_url):
        client = MagicMock()
        client.get.return_value = "stored"
        mock_from_url.return_value = client

        store = RedisStore(redis_url="redis://localhost:6379", namespace="site")
        store.set("funnel_user_id", "anon-1")

        mock_from_url.assert_called_once_with("redis://localhost:6379", decode_responses=True)
        client.set.assert_called_once_with("site:funnel_user_id", "anon-1")
        assert store.get("funnel_user_id") == "stored"
        client.get.assert_called_once_with("site:funnel_user_id")

    @patch("tools.store.redis.from_url")
    def test_read_errors_are_logged_not_raised(self, mock_from_url):
        client = MagicMock()
        client.get.side_effect = TimeoutError("slow")
        mock_from_url.return_value = client

        store = RedisStore(redis_url="redis://localhost:6379")

        assert store.get("anything") is None

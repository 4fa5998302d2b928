"""
Twitter Poller - relay the project's new tweets into chat

Hourly:
  1. Resolve the account's user id once (cached in twitterUserId.json)
  2. Fetch timeline tweets newer than the last relayed id
  3. Relay oldest → newest through the injected relay function
  4. Persist the newest id (lastTweet.json)

tweepy is synchronous, so calls run in the default executor.
Failures are logged; the next tick simply tries again.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Awaitable, Callable, Optional

import tweepy

logger = logging.getLogger("winlew.twitter")

_DEFAULT_LAST_TWEET_ID = 1924173606050730291


def _load_json(path: Path) -> dict:
    try:
        data = json.loads(path.read_text())
    except (OSError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}


def _write_json(path: Path, data: dict):
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(data, indent=2))
    tmp.replace(path)


def format_tweet(username: str, tweet_id, text: str) -> str:
    url = f"https://x.com/{username}/status/{tweet_id}"
    return f"🆕 New Tweet from @{username}:\n{text}\n{url}"


class TwitterPoller:
    def __init__(
        self,
        client: tweepy.Client,
        username: str,
        data_dir: Path,
        relay: Callable[[str], Awaitable[None]],
    ):
        self._client = client
        self._username = username
        self._relay = relay
        self._user_file = Path(data_dir) / "twitterUserId.json"
        self._last_file = Path(data_dir) / "lastTweet.json"
        self._user_id: Optional[str] = None
        self._last_tweet_id: int = int(
            _load_json(self._last_file).get("lastTweetId") or _DEFAULT_LAST_TWEET_ID
        )

    @property
    def last_tweet_id(self) -> int:
        return self._last_tweet_id

    async def _run(self, fn, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, lambda: fn(*args, **kwargs))

    async def user_id(self) -> str:
        if self._user_id:
            return self._user_id
        cached = _load_json(self._user_file).get("twitterUserId")
        if cached:
            self._user_id = str(cached)
            return self._user_id
        response = await self._run(self._client.get_user, username=self._username)
        self._user_id = str(response.data.id)
        _write_json(self._user_file, {"twitterUserId": self._user_id})
        logger.info(f"Twitter user @{self._username} → {self._user_id}")
        return self._user_id

    async def poll_once(self) -> int:
        """Relay any new tweets. Returns how many were relayed."""
        try:
            user_id = await self.user_id()
            response = await self._run(
                self._client.get_users_tweets,
                user_id,
                since_id=self._last_tweet_id,
                tweet_fields=["created_at", "text"],
            )
        except Exception as e:
            logger.error(f"Twitter poll error: {type(e).__name__}: {e}")
            return 0

        tweets = list(response.data or [])
        if not tweets:
            return 0

        relayed = 0
        # API returns newest first
        for tweet in reversed(tweets):
            try:
                await self._relay(format_tweet(self._username, tweet.id, tweet.text))
            except Exception as e:
                logger.error(f"Tweet relay failed at {tweet.id}: {e}")
                break
            self._last_tweet_id = int(tweet.id)
            relayed += 1

        _write_json(self._last_file, {"lastTweetId": self._last_tweet_id})
        logger.info(f"Relayed {relayed} new tweet(s) from @{self._username}")
        return relayed

#!/usr/bin/env python3
"""
Action engine for mutating API calls.

Every mutating call (edit, delete, move, undelete, purge, upload) goes
through ``ActionEngine.submit``: build the form with the session's current
token, POST it, classify the structured reply into an ``Outcome`` and let
``run_with_policy`` decide whether to return, retry, back off or refresh
the token. Running out of attempts produces a failed ``ActionResult``;
nothing here raises for an operational failure.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Optional

from wikicore.errors import TransportError
from wikicore.session import Session
from wikicore.transport import ApiResponse, Transport

logger = logging.getLogger(__name__)


class Outcome(Enum):
    SUCCESS = "success"
    RATE_LIMITED = "ratelimited"
    PROTECTED = "protected"
    BAD_TOKEN = "badtoken"
    NO_TOKEN = "notoken"
    ERROR = "error"
    NO_RESPONSE = "noresponse"


RATE_LIMIT_CODES = frozenset({"ratelimited", "maxlag", "actionthrottledtext"})
PROTECTED_CODES = frozenset({
    "protectedpage",
    "cascadeprotected",
    "protectedtitle",
    "protectednamespace",
    "protectednamespace-interface",
    "customcssjsprotected",
    "permissiondenied",
    "blocked",
    "autoblocked",
})
SUCCESS_RESULTS = frozenset({"Success", "Continue"})


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to try a call and how long to back off when rate limited."""

    max_attempts: int
    backoff: float = 10.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")


EDIT_POLICY = RetryPolicy(max_attempts=5)
IDEMPOTENT_POLICY = RetryPolicy(max_attempts=10)
CHUNK_POLICY = RetryPolicy(max_attempts=5)
UNSTASH_POLICY = RetryPolicy(max_attempts=3)


@dataclass
class Reply:
    """A single attempt's classified reply."""

    outcome: Outcome
    code: Optional[str] = None
    data: Optional[dict] = None
    retry_after: Optional[float] = None


@dataclass
class ActionResult:
    """Final result of a mutating call after all retries."""

    action: str
    outcome: Outcome
    attempts: int
    code: Optional[str] = None
    data: Optional[dict] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    def __bool__(self) -> bool:
        return self.ok


def classify(data: Optional[dict], action: str, ignore: Iterable[str] = ()) -> tuple[Outcome, Optional[str]]:
    """
    Classify an action API response.

    Args:
        data: Parsed JSON response, or None if there was none
        action: Action name; success replies are keyed by it
        ignore: Error codes to treat as success (e.g., "missingtitle" for delete)

    Returns:
        The outcome and the server's error/result code, if any
    """
    if not isinstance(data, dict):
        return Outcome.NO_RESPONSE, None

    if "error" in data:
        code = data["error"].get("code", "")
        if code in ignore:
            return Outcome.SUCCESS, code
        if code == "badtoken":
            return Outcome.BAD_TOKEN, code
        if code == "notoken":
            return Outcome.NO_TOKEN, code
        if code in RATE_LIMIT_CODES:
            return Outcome.RATE_LIMITED, code
        if code in PROTECTED_CODES:
            return Outcome.PROTECTED, code
        return Outcome.ERROR, code

    body = data.get(action)
    if isinstance(body, dict):
        result = body.get("result")
        # delete/move/undelete report success without a "result" field
        if result is None or result in SUCCESS_RESULTS:
            return Outcome.SUCCESS, result
        return Outcome.ERROR, str(result).lower()
    if isinstance(body, list):
        if body and all("purged" in entry for entry in body):
            return Outcome.SUCCESS, None
        return Outcome.ERROR, "notpurged"

    return Outcome.NO_RESPONSE, None


def reply_from_response(response: ApiResponse, action: str, ignore: Iterable[str] = ()) -> Reply:
    """Turn an HTTP response into a classified Reply."""
    if response.status == 429:
        return Reply(Outcome.RATE_LIMITED, "http429", retry_after=response.retry_after)
    if not response.ok:
        return Reply(Outcome.NO_RESPONSE, f"http{response.status}")
    try:
        data = response.json()
    except TransportError as e:
        logger.warning(f"{action}: unreadable response: {e}")
        return Reply(Outcome.NO_RESPONSE)
    outcome, code = classify(data, action, ignore)
    return Reply(outcome, code, data, response.retry_after)


def run_with_policy(
    attempt: Callable[[], Reply],
    policy: RetryPolicy,
    refresh_token: Callable[[], None],
    description: str = "action",
    action: str = "action",
) -> ActionResult:
    """
    Call ``attempt`` until it succeeds or the policy gives up.

    - SUCCESS returns at once.
    - PROTECTED fails at once; permissions do not change between retries.
    - RATE_LIMITED sleeps for the server's Retry-After (or the policy
      backoff) and retries.
    - BAD_TOKEN / NO_TOKEN refreshes the token and retries, once per call.
    - ERROR / NO_RESPONSE retries immediately.

    Args:
        attempt: Performs one request and classifies the reply
        policy: Attempt cap and rate-limit backoff
        refresh_token: Called before retrying after a token failure
        description: Human-readable description for logging
        action: Action name recorded on the result

    Returns:
        ActionResult; ``ok`` is False when the cap was exhausted or the
        failure was terminal
    """
    refreshed = False
    reply = Reply(Outcome.NO_RESPONSE)
    attempts = 0

    while attempts < policy.max_attempts:
        attempts += 1
        reply = attempt()

        if reply.outcome is Outcome.SUCCESS:
            return ActionResult(action, reply.outcome, attempts, reply.code, reply.data)

        if reply.outcome is Outcome.PROTECTED:
            logger.error(f"{description}: {reply.code}, not retrying")
            return ActionResult(action, reply.outcome, attempts, reply.code, reply.data)

        if reply.outcome in (Outcome.BAD_TOKEN, Outcome.NO_TOKEN):
            if refreshed:
                logger.error(f"{description}: token rejected again after refresh")
                return ActionResult(action, reply.outcome, attempts, reply.code, reply.data)
            if attempts >= policy.max_attempts:
                break
            logger.warning(f"{description}: {reply.code}, refreshing token")
            refreshed = True
            refresh_token()
            continue

        if attempts >= policy.max_attempts:
            break

        if reply.outcome is Outcome.RATE_LIMITED:
            delay = reply.retry_after if reply.retry_after is not None else policy.backoff
            logger.info(f"{description}: rate limited by server, sleeping {delay:g} seconds")
            time.sleep(delay)
        else:
            logger.warning(
                f"{description}: got {reply.code or reply.outcome.value}, "
                f"retrying ({attempts}/{policy.max_attempts})"
            )

    logger.error(f"{description}: giving up after {attempts} attempts ({reply.code or reply.outcome.value})")
    return ActionResult(action, reply.outcome, attempts, reply.code, reply.data)


class ActionEngine:
    """Executes mutating calls for one session."""

    def __init__(
        self,
        session: Session,
        transport: Transport,
        fetch_token: Callable[[], Optional[str]],
        rate_limit_backoff: Optional[float] = None,
    ):
        """
        Args:
            session: Session supplying the token and bot flag
            transport: Transport for the session's endpoint
            fetch_token: Performs the CSRF token query (None on failure)
            rate_limit_backoff: Seconds to wait when rate limited without Retry-After
        """
        self.session = session
        self.transport = transport
        self.fetch_token = fetch_token
        if rate_limit_backoff is None:
            rate_limit_backoff = transport.settings.rate_limit_backoff
        self.rate_limit_backoff = rate_limit_backoff

    def policy(self, base: RetryPolicy) -> RetryPolicy:
        """Apply this engine's configured backoff to a base policy."""
        return RetryPolicy(base.max_attempts, self.rate_limit_backoff)

    def refresh_token(self, stale: Optional[str] = None) -> str:
        return self.session.refresh_token(self.fetch_token, stale)

    def submit(
        self,
        action: str,
        form: dict,
        policy: RetryPolicy = EDIT_POLICY,
        needs_token: bool = True,
        ignore: Iterable[str] = (),
        description: Optional[str] = None,
    ) -> ActionResult:
        """
        POST an action with retries.

        Args:
            action: API action name (e.g., "edit")
            form: Form fields, without format or token
            policy: Retry policy for this call
            needs_token: Attach the session's CSRF token
            ignore: Error codes to treat as success
            description: Human-readable description for logging
        """
        description = description or f"{self.session}: {action}"
        ignore = frozenset(ignore)
        used = {"token": None}

        def attempt() -> Reply:
            payload = {"format": "json", "formatversion": "2"}
            payload.update({k: v for k, v in form.items() if v is not None})
            if needs_token:
                used["token"] = payload["token"] = self.session.token
            try:
                response = self.transport.post({"action": action}, payload, description)
            except TransportError as e:
                logger.warning(f"{description}: {e}")
                return Reply(Outcome.NO_RESPONSE)
            return reply_from_response(response, action, ignore)

        return run_with_policy(
            attempt,
            self.policy(policy),
            lambda: self.refresh_token(used["token"]),
            description,
            action,
        )

    def edit(self, title: str, text: str, summary: str = "", minor: bool = False) -> ActionResult:
        logger.info(f"{self.session}: Editing '{title}'")
        form = {"title": title, "text": text, "summary": summary}
        if minor:
            form["minor"] = "1"
        if self.session.is_bot:
            form["bot"] = "1"
        return self.submit("edit", form, EDIT_POLICY, description=f"{self.session}: edit '{title}'")

    def add_text(self, title: str, text: str, summary: str = "", append: bool = True) -> ActionResult:
        logger.info(f"{self.session}: Adding text to '{title}'")
        form = {"title": title, "appendtext" if append else "prependtext": text, "summary": summary}
        if self.session.is_bot:
            form["bot"] = "1"
        return self.submit("edit", form, EDIT_POLICY, description=f"{self.session}: add text to '{title}'")

    def delete(self, title: str, reason: str = "") -> ActionResult:
        logger.info(f"{self.session}: Deleting '{title}'")
        return self.submit(
            "delete",
            {"title": title, "reason": reason},
            IDEMPOTENT_POLICY,
            ignore={"missingtitle"},
            description=f"{self.session}: delete '{title}'",
        )

    def undelete(self, title: str, reason: str = "") -> ActionResult:
        logger.info(f"{self.session}: Restoring '{title}'")
        return self.submit(
            "undelete",
            {"title": title, "reason": reason},
            IDEMPOTENT_POLICY,
            description=f"{self.session}: undelete '{title}'",
        )

    def move(
        self,
        title: str,
        new_title: str,
        reason: str = "",
        move_talk: bool = True,
        suppress_redirect: bool = False,
    ) -> ActionResult:
        logger.info(f"{self.session}: Moving '{title}' to '{new_title}'")
        form = {"from": title, "to": new_title, "reason": reason}
        if move_talk:
            form["movetalk"] = "1"
        if suppress_redirect:
            form["noredirect"] = "1"
        return self.submit("move", form, EDIT_POLICY, description=f"{self.session}: move '{title}'")

    def purge(self, titles: Iterable[str]) -> ActionResult:
        titles = list(titles)
        logger.info(f"{self.session}: Purging {len(titles)} titles")
        return self.submit(
            "purge",
            {"titles": "|".join(titles)},
            IDEMPOTENT_POLICY,
            needs_token=False,
            description=f"{self.session}: purge {titles[:3]}{'...' if len(titles) > 3 else ''}",
        )

"""
SyncOrchestrator: drives one dashboard configuration's sync cycle.
SyncManager: owns the shared collaborators and one orchestrator per configuration.

Flow for a single cycle:
  1. Resolve credentials (stored token, refreshed when close to expiry;
     legacy access_token / strava_id overrides applied on top)
  2. Load the activity / segment / record caches from disk
  3. Athlete stats                → STATS
  4. Incremental activity fetch   → persist activities, ACTIVITIES
  5. Segment enrichment + records → persist all three caches, RECORDS
  6. Crown scan (one batch)       → persist segments, CROWNS
  7. Aggregates from the cache    → SUMMARY

A quota signal ends the network stages for this cycle; what was fetched is
already persisted and the next scheduled cycle continues from there. An
invalid-token fault makes the stage persist its progress and raise
AuthFaultError; the cycle then refreshes the token exactly once and starts
over from the caches on disk. Missing or unusable credentials end the cycle
with an ERROR notification.

Only one cycle per configuration runs at a time; a cycle requested while
another is in flight is skipped.
"""
import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Dict, List, Optional

import httpx

from stravadash import notify
from stravadash.analysis.aggregator import build_summary
from stravadash.analysis.pace import add_stats_pace
from stravadash.config import DashboardConfig, Settings, get_settings
from stravadash.models.activity import Activity
from stravadash.models.sync import SyncStatus
from stravadash.models.token import Token
from stravadash.notify import Notifier
from stravadash.scheduler import jobs
from stravadash.scheduler.rotation import PeriodRotation
from stravadash.strava.auth import TokenNotFoundError, TokenRefreshError, TokenStore
from stravadash.strava.client import StravaClient
from stravadash.strava.gateway import Ok, StravaGateway
from stravadash.sync.activities import ActivityFetcher
from stravadash.sync.cache import SyncCache, SyncState, dump_records
from stravadash.sync.crowns import CrownScanner
from stravadash.sync.outcome import AuthFaultError, StageOutcome, StopReason, stop_reason, worst_reason
from stravadash.sync.segments import SegmentEnricher

logger = logging.getLogger(__name__)

AUTH_PATH = "/strava/auth/"
LEGACY_AUTH_WARNING = "Strava authorisation is changing. Please update your config."


class ConfigurationError(RuntimeError):
    """Raised when a configuration cannot be synced as given (no client id, no athlete id)."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


def sorted_for_display(activities: List[Activity]) -> List[dict]:
    """Activities newest first, JSON-ready."""
    ordered = sorted(
        activities,
        key=lambda a: a.start_date or a.start_date_local or datetime.min.replace(tzinfo=timezone.utc),
        reverse=True,
    )
    return [a.model_dump(mode="json", exclude_none=True) for a in ordered]


class SyncOrchestrator:
    """Runs sync cycles for one DashboardConfig."""

    def __init__(
        self,
        config: DashboardConfig,
        token_store: TokenStore,
        client: StravaClient,
        cache: SyncCache,
        notifier: Notifier,
        settings: Optional[Settings] = None,
    ):
        """
        Args:
            config: validated dashboard configuration.
            token_store: shared credentials store.
            client: StravaClient used both for API calls and token refresh.
            cache: this configuration's on-disk caches.
            notifier: outbound notification channel.
            settings: process settings (defaults to get_settings()).
        """
        self.token_store = token_store
        self.client = client
        self.cache = cache
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.status = SyncStatus(identifier=config.identifier)
        self.crown_cursor = 0
        self._lock = asyncio.Lock()
        self.update_config(config)

    @property
    def identifier(self) -> str:
        return self.config.identifier

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def update_config(self, config: DashboardConfig) -> None:
        self.config = config
        if config.debug:
            logging.getLogger("stravadash").setLevel(logging.DEBUG)

    def _send(self, event: str, data) -> None:
        self.notifier.send(self.identifier, event, {"data": data})

    # ─── Cycle ────────────────────────────────────────────────────────────────

    async def sync(self) -> SyncStatus:
        """
        Run one full cycle unless one is already in flight.

        Returns:
            The SyncStatus of this cycle (status "skipped" if none was run).
        """
        if self._lock.locked():
            logger.info("Sync for %s already in progress; skipping", self.identifier)
            return SyncStatus(identifier=self.identifier, status="skipped", started_at=_now())

        async with self._lock:
            status = SyncStatus(identifier=self.identifier, status="running", started_at=_now())
            self.status = status
            try:
                await self._sync_with_refresh(status)
                status.status = "partial" if status.stopped_by else "success"
            except (ConfigurationError, TokenNotFoundError, TokenRefreshError) as exc:
                logger.error("Sync for %s failed: %s", self.identifier, exc)
                status.status = "error"
                status.error_message = str(exc)
                self.notifier.error(self.identifier, str(exc))
            except AuthFaultError:
                message = (
                    "Strava rejected the access token after a refresh. "
                    f'Please re-authorise at <a href="{AUTH_PATH}">{AUTH_PATH}</a>'
                )
                logger.error("Sync for %s failed: %s", self.identifier, message)
                status.status = "error"
                status.error_message = message
                self.notifier.error(self.identifier, message)
            except Exception as exc:
                status.status = "error"
                status.error_message = str(exc)
                raise
            finally:
                status.finished_at = _now()
        return status

    async def _sync_with_refresh(self, status: SyncStatus) -> None:
        token = await self._resolve_token()
        gateway = StravaGateway(self.client, token.access_token)
        try:
            await self._cycle(gateway, token.athlete_id, status)
        except AuthFaultError:
            if not self.config.client_id:
                raise ConfigurationError(
                    "Strava rejected the configured access_token. "
                    f"Add client_id/client_secret and authorise at {AUTH_PATH}"
                ) from None
            logger.warning("Access token for %s is invalid; refreshing", self.identifier)
            status.stopped_by = None
            refreshed = await self.token_store.refresh(
                self.config.client_id, self.config.client_secret, self.client
            )
            gateway.access_token = refreshed.access_token
            await self._cycle(gateway, token.athlete_id, status)

    async def _resolve_token(self) -> Token:
        """
        Raises:
            ConfigurationError: neither a client id nor a legacy token is configured,
                or no athlete id is known.
            TokenNotFoundError: the client id was never authorised.
            TokenRefreshError: the near-expiry refresh failed.
        """
        config = self.config
        if config.client_id:
            try:
                token = await self.token_store.get_valid_token(
                    config.client_id,
                    config.client_secret,
                    self.client,
                    margin=self.settings.token_refresh_margin,
                )
            except TokenNotFoundError:
                if not config.access_token:
                    raise TokenNotFoundError(
                        f'Client id unauthorised - please visit <a href="{AUTH_PATH}">{AUTH_PATH}</a>'
                    ) from None
                token = Token(access_token=config.access_token)
        elif config.access_token:
            token = Token(access_token=config.access_token)
        else:
            raise ConfigurationError("No client_id configured for this module.")

        overrides = {}
        if config.access_token:
            overrides["access_token"] = config.access_token
        if config.strava_id:
            overrides["athlete_id"] = config.strava_id
        token = token.model_copy(update=overrides)

        if token.athlete_id is None:
            raise ConfigurationError(
                f"No athlete id known for this module. Re-authorise at {AUTH_PATH} or set strava_id."
            )
        return token

    async def _cycle(self, gateway: StravaGateway, athlete_id: int, status: SyncStatus) -> None:
        state = self.cache.load()
        stages = [
            ("stats", lambda: self._stats_stage(gateway, athlete_id)),
            ("activities", lambda: self._activities_stage(gateway, state, status)),
        ]
        if self.config.segments.enabled:
            stages.append(("segments", lambda: self._segments_stage(gateway, state, status)))
        if self.config.rankings.enabled:
            stages.append(("crowns", lambda: self._crowns_stage(gateway, state, status)))

        for name, run in stages:
            outcome = await run()
            reason = worst_reason(
                StopReason(status.stopped_by) if status.stopped_by else None,
                outcome.stopped_by,
            )
            status.stopped_by = reason.value if reason else None
            if outcome.stopped_by is StopReason.AUTH:
                raise AuthFaultError(f"Invalid access token during {name} stage")
            if outcome.quota_exhausted:
                logger.warning("Rate limit reached during %s; deferring the rest to the next cycle", name)
                break

        self.publish_summary(state.activities)

    # ─── Stages ───────────────────────────────────────────────────────────────

    async def _stats_stage(self, gateway: StravaGateway, athlete_id: int) -> StageOutcome:
        logger.info("Fetching athlete stats for %s", athlete_id)
        result = await gateway.get_athlete_stats(athlete_id)
        outcome = StageOutcome(stopped_by=stop_reason(result))
        if isinstance(result, Ok) and isinstance(result.data, dict):
            self._send(notify.STATS, add_stats_pace(result.data, self.config.units))
            outcome.processed = 1
        return outcome

    async def _activities_stage(self, gateway: StravaGateway, state: SyncState, status: SyncStatus) -> StageOutcome:
        outcome = await ActivityFetcher(gateway).fetch(state.activities)
        status.activities_fetched += outcome.changed
        if outcome.changed:
            self.cache.save_activities(state.activities)
        self._send(notify.ACTIVITIES, sorted_for_display(state.activities))
        return outcome

    async def _segments_stage(self, gateway: StravaGateway, state: SyncState, status: SyncStatus) -> StageOutcome:
        records = self.config.records
        enricher = SegmentEnricher(
            gateway,
            concurrency=self.settings.detail_concurrency,
            transport_retries=self.config.segments.transport_retries,
            records_enabled=records.enabled,
            max_records=records.max_entries,
        )
        outcome = await enricher.enrich(state)
        status.activities_checked += outcome.processed
        if outcome.processed:
            self.cache.save_activities(state.activities)
            self.cache.save_segments(state.segments)
            if records.enabled:
                self.cache.save_records(state.records)
        if records.enabled:
            self._send(notify.RECORDS, dump_records(state.records))
        return outcome

    async def _crowns_stage(self, gateway: StravaGateway, state: SyncState, status: SyncStatus) -> StageOutcome:
        scanner = CrownScanner(
            gateway,
            batch_size=self.config.rankings.batch_size,
            concurrency=self.settings.leaderboard_concurrency,
        )
        outcome = await scanner.scan(state.segments, self.crown_cursor)
        self.crown_cursor = outcome.cursor
        status.segments_scanned += outcome.processed
        if outcome.processed:
            self.cache.save_segments(state.segments)
        self._send(
            notify.CROWNS,
            {
                "rankings": outcome.rankings,
                "segments": [s.model_dump(mode="json", exclude_none=True) for s in state.segments if s.entry],
            },
        )
        return outcome

    def publish_summary(self, activities: Optional[List[Activity]] = None, today: Optional[date] = None) -> None:
        """Send SUMMARY computed from `activities` (default: the cached list)."""
        if activities is None:
            activities = self.cache.load_activities()
        self._send(notify.SUMMARY, build_summary(activities, self.config, today))


class SyncManager:
    """
    Process-wide owner of the token store, Strava client, notifier and
    scheduler, with one SyncOrchestrator per configuration identifier.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        token_store: Optional[TokenStore] = None,
        client: Optional[StravaClient] = None,
        notifier: Optional[Notifier] = None,
        scheduler=None,
    ):
        self.settings = settings or get_settings()
        self.token_store = token_store or TokenStore(self.settings.tokens_file)
        self.client = client or StravaClient(
            timeout=self.settings.request_timeout,
            short_term_limit=self.settings.short_term_limit,
            long_term_limit=self.settings.long_term_limit,
        )
        self.notifier = notifier or Notifier()
        self.scheduler = scheduler
        self.configs: Dict[str, DashboardConfig] = {}
        self.orchestrators: Dict[str, SyncOrchestrator] = {}
        self.rotations: Dict[str, PeriodRotation] = {}

    async def aclose(self) -> None:
        await self.client.aclose()

    def cache_for(self, identifier: str) -> SyncCache:
        return SyncCache(self.settings.cache_dir / identifier)

    def get_config(self, identifier: str) -> DashboardConfig:
        try:
            return self.configs[identifier]
        except KeyError:
            raise ConfigurationError(f"Unknown module identifier {identifier!r}") from None

    def get_orchestrator(self, identifier: str) -> SyncOrchestrator:
        orchestrator = self.orchestrators.get(identifier)
        if orchestrator is None:
            raise ConfigurationError(f"Module {identifier!r} is not configured for sync")
        return orchestrator

    # ─── Inbound configuration ────────────────────────────────────────────────

    def configure(self, config: DashboardConfig) -> Optional[SyncOrchestrator]:
        """
        Register (or replace) a configuration and schedule its sync job.

        Returns:
            The orchestrator, or None if the client id still needs authorising
            (an ERROR notification with the auth link has been sent).
        """
        identifier = config.identifier
        self.configs[identifier] = config

        if config.uses_legacy_auth:
            self.notifier.warning(identifier, LEGACY_AUTH_WARNING)

        if config.client_id and not config.access_token and not self.token_store.has_token(config.client_id):
            logger.warning("Client %s for %s is not authorised", config.client_id, identifier)
            self.notifier.error(
                identifier,
                f'Client id unauthorised - please visit <a href="{AUTH_PATH}">{AUTH_PATH}</a>',
            )
            return None

        orchestrator = self.orchestrators.get(identifier)
        if orchestrator is None:
            orchestrator = SyncOrchestrator(
                config,
                self.token_store,
                self.client,
                self.cache_for(identifier),
                self.notifier,
                self.settings,
            )
            self.orchestrators[identifier] = orchestrator
        else:
            orchestrator.update_config(config)

        if self.scheduler is not None:
            jobs.schedule_sync(self.scheduler, orchestrator, config.fetch_interval)
            if config.auto_rotate and config.mode == "table":
                self.rotations[identifier] = PeriodRotation(config.period)
                jobs.schedule_rotation(self.scheduler, self, identifier, config.update_interval)
            else:
                self.rotations.pop(identifier, None)
                jobs.unschedule_rotation(self.scheduler, identifier)
        return orchestrator

    async def trigger(self, identifier: str) -> SyncStatus:
        return await self.get_orchestrator(identifier).sync()

    def statuses(self) -> Dict[str, SyncStatus]:
        return {identifier: o.status for identifier, o in self.orchestrators.items()}

    def rotate(self, identifier: str) -> str:
        """Advance the display period of a table-mode configuration and republish."""
        rotation = self.rotations.setdefault(identifier, PeriodRotation(self.get_config(identifier).period))
        period = rotation.advance()
        config = self.get_config(identifier).model_copy(update={"period": period})
        self.configs[identifier] = config
        self.notifier.send(identifier, notify.PERIOD, {"data": {"period": period}})

        orchestrator = self.orchestrators.get(identifier)
        if orchestrator is not None:
            orchestrator.update_config(config)
            orchestrator.publish_summary()
        return period

    # ─── OAuth ────────────────────────────────────────────────────────────────

    def redirect_uri(self, base_url: str) -> str:
        base = (self.settings.public_url or base_url).rstrip("/")
        return f"{base}{AUTH_PATH}exchange"

    def authorization_url(self, identifier: str, base_url: str) -> str:
        config = self.get_config(identifier)
        if not config.client_id:
            raise ConfigurationError(f"Module {identifier!r} has no client_id")
        return StravaClient.authorization_url(
            config.client_id, self.redirect_uri(base_url), state=identifier
        )

    async def exchange_code(self, identifier: str, code: str) -> Token:
        """
        Complete the OAuth dance for a configuration and start syncing it.

        Raises:
            ConfigurationError: unknown identifier.
            StravaOAuthError: Strava rejected the code.
        """
        config = self.get_config(identifier)
        data = await self.client.exchange_code(config.client_id, config.client_secret, code)
        token = Token.model_validate(data)
        await self.token_store.save_token(config.client_id, token)
        logger.info("Stored new credential for client %s (athlete %s)", config.client_id, token.athlete_id)
        self.configure(config)
        return token

    async def deauthorize(self, identifier: str) -> bool:
        """
        Revoke Strava access for a configuration, delete its stored credential
        and stop its background jobs. The configuration itself is kept so it
        can be authorised again.

        Returns:
            Whether Strava confirmed the revocation. The credential is deleted
            either way.

        Raises:
            ConfigurationError: unknown identifier.
            TokenNotFoundError: nothing stored for the client id.
        """
        config = self.get_config(identifier)
        credential = self.token_store.get_credential(config.client_id)
        try:
            revoked = await self.client.deauthorize(credential.token.access_token)
        except httpx.HTTPError as exc:
            logger.warning("Strava deauthorize for client %s failed: %s", credential.client_id, exc)
            revoked = False
        await self.token_store.save_token(credential.client_id, None)

        self.orchestrators.pop(identifier, None)
        self.rotations.pop(identifier, None)
        if self.scheduler is not None:
            jobs.unschedule_sync(self.scheduler, identifier)
            jobs.unschedule_rotation(self.scheduler, identifier)
        logger.info("Deauthorised client %s for %s (revoked=%s)", credential.client_id, identifier, revoked)
        return revoked

    def auth_status(self) -> List[dict]:
        """Known configurations and whether each client id has a stored credential."""
        tokens = self.token_store.load()
        return [
            {
                "identifier": identifier,
                "client_id": config.client_id,
                "authorised": config.client_id in tokens,
            }
            for identifier, config in self.configs.items()
        ]

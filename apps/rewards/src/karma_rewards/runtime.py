"""Process-level wiring of the reward settlement collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from loguru import logger

from karma_rewards.blockchain.client import AlgorandClient, SigningAccounts
from karma_rewards.blockchain.remote import AlgodRemoteLedger, RemoteLedger
from karma_rewards.blockchain.retry import RateLimiter, RetryPolicy
from karma_rewards.core.settings import Settings, get_settings
from karma_rewards.services.cache import Cache, RedisCache, RunLease
from karma_rewards.services.notifications import Notifier, SlackWebhookNotifier
from karma_rewards.services.rewards import (
    BalanceRule,
    LedgerStore,
    NetworkBalanceMonitor,
    RewardsService,
    SettlementEngine,
    WalletSelector,
)
from karma_rewards.services.rewards.ledger import SessionFactory


def node_url(server: str, port: str | int | None) -> str:
    server = server.rstrip("/")
    return f"{server}:{port}" if port else server


def build_remote_ledger(settings: Settings) -> AlgodRemoteLedger:
    """Build the REST ledger; an API token is mandatory except for algonode endpoints."""

    if not settings.algo_api_token and "algonode" not in settings.algod_server:
        raise ValueError("ALGO_API_TOKEN is required unless the node is an algonode endpoint")
    return AlgodRemoteLedger(
        algod_url=node_url(settings.algod_server, settings.algod_port),
        indexer_url=node_url(settings.indexer_server, settings.indexer_port),
        api_token=settings.algo_api_token,
        timeout_seconds=settings.algo_request_timeout_seconds,
    )


def retry_policy_from_settings(settings: Settings) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.remote_retry_max_attempts,
        base_backoff_seconds=settings.remote_retry_base_backoff_seconds,
        backoff_multiplier=settings.remote_retry_backoff_multiplier,
        max_backoff_seconds=settings.remote_retry_max_backoff_seconds,
        jitter_seconds=settings.remote_retry_jitter_seconds,
    )


def balance_rules_from_settings(settings: Settings) -> list[BalanceRule]:
    return [
        BalanceRule(
            unit_name=settings.karma_asset_unit_name,
            low_amount=settings.karma_low_token_amount,
            replenish_amount=settings.karma_replenish_amount,
        ),
        BalanceRule(
            unit_name=settings.enlightenment_asset_unit_name,
            low_amount=settings.enlightenment_low_token_amount,
        ),
    ]


@dataclass
class RewardsRuntime:
    settings: Settings
    remote: RemoteLedger
    cache: Cache
    client: AlgorandClient
    ledger: LedgerStore
    lease: RunLease
    selector: WalletSelector
    engine: SettlementEngine
    service: RewardsService
    notifier: Notifier
    balance_monitor: NetworkBalanceMonitor

    @property
    def balance_rules(self) -> list[BalanceRule]:
        return balance_rules_from_settings(self.settings)

    async def aclose(self) -> None:
        for resource in (self.remote, self.cache):
            close: Any = getattr(resource, "aclose", None)
            if close is not None:
                await close()


def build_rewards_runtime(
    *,
    session_factory: SessionFactory,
    settings: Settings | None = None,
    remote: RemoteLedger | None = None,
    cache: Cache | None = None,
    notifier: Notifier | None = None,
    accounts: SigningAccounts | None = None,
    retry_policy: RetryPolicy | None = None,
    rate_limiter: RateLimiter | None = None,
) -> RewardsRuntime:
    """Wire every collaborator once for the process. Arguments override the defaults."""

    settings = settings or get_settings()
    remote = remote or build_remote_ledger(settings)
    cache = cache or RedisCache()
    notifier = notifier or SlackWebhookNotifier(
        settings.rewards_slack_webhook_url,
        channel=settings.rewards_slack_channel,
        mentions=settings.rewards_alert_mentions,
    )
    accounts = accounts or SigningAccounts.from_mnemonics(
        clawback_mnemonic=settings.clawback_token_mnemonic,
        claim_mnemonic=settings.claim_token_mnemonic or None,
    )

    client = AlgorandClient(
        remote,
        accounts=accounts,
        cache=cache,
        retry_policy=retry_policy or retry_policy_from_settings(settings),
        rate_limiter=rate_limiter
        or RateLimiter(
            concurrency=settings.remote_rate_limit_concurrency,
            min_interval_seconds=settings.remote_rate_limit_min_interval_seconds,
        ),
        holdings_ttl_seconds=settings.holdings_cache_ttl_seconds,
        confirmation_rounds=settings.settlement_confirmation_rounds,
        max_group_size=settings.settlement_max_group_size,
    )
    ledger = LedgerStore(session_factory)
    lease = RunLease(cache, ttl_seconds=settings.settlement_lease_ttl_seconds)
    selector = WalletSelector(ledger, client)
    engine = SettlementEngine(
        ledger=ledger,
        client=client,
        selector=selector,
        lease=lease,
        notifier=notifier,
        max_group_size=settings.settlement_max_group_size,
    )
    service = RewardsService(ledger=ledger, client=client, selector=selector, engine=engine, lease=lease)
    balance_monitor = NetworkBalanceMonitor(client, notifier, replenish_address=settings.replenish_token_address)

    logger.debug("Rewards runtime wired", claim_address=accounts.claim.address)
    return RewardsRuntime(
        settings=settings,
        remote=remote,
        cache=cache,
        client=client,
        ledger=ledger,
        lease=lease,
        selector=selector,
        engine=engine,
        service=service,
        notifier=notifier,
        balance_monitor=balance_monitor,
    )


__all__ = [
    "RewardsRuntime",
    "balance_rules_from_settings",
    "build_remote_ledger",
    "build_rewards_runtime",
    "node_url",
    "retry_policy_from_settings",
]

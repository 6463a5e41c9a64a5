"""Sandbox provisioning: create, wait for network, configure proxy, add user."""

from typing import List, Optional

from .clock import Clock, SystemClock
from .errors import ProvisionError
from .log import RunLog
from .retry import constant_delay, retry
from .sandbox import ExecResult, Sandbox, execute

READY_ATTEMPTS = 60
READY_INTERVAL_SEC = 2.0

YUM_CONF = "/etc/yum.conf"
FASTESTMIRROR_CONF = "/etc/yum/pluginconf.d/fastestmirror.conf"


def _run(sb: Sandbox, argv: List[str], log: RunLog) -> ExecResult:
    log.command(argv)
    return execute(sb, argv)


def wait_for_network(
    sb: Sandbox,
    probe_host: str,
    *,
    clock: Clock,
    log: RunLog,
    attempts: int = READY_ATTEMPTS,
    interval_sec: float = READY_INTERVAL_SEC,
) -> bool:
    """Poll until ``probe_host`` resolves from inside the sandbox."""
    outcome = retry(
        lambda attempt: _run(sb, ["getent", "hosts", probe_host], log).ok,
        attempts,
        constant_delay(interval_sec),
        clock=clock,
    )
    return outcome.ok


def configure_proxy(sb: Sandbox, proxy: str, log: RunLog) -> None:
    """Point yum at ``proxy`` and switch off the fastestmirror plugin.

    fastestmirror probes mirrors directly and times out behind a proxy.
    """
    result = _run(
        sb,
        ["sh", "-c", 'printf "proxy=%s\\n" "$1" >> "$2"', "sh", proxy, YUM_CONF],
        log,
    )
    if not result.ok:
        raise ProvisionError(f"Could not write proxy to {YUM_CONF}", output=result.output)
    result = _run(
        sb,
        [
            "sh", "-c",
            '[ ! -f "$1" ] || sed -i "s/^enabled=.*/enabled=0/" "$1"',
            "sh", FASTESTMIRROR_CONF,
        ],
        log,
    )
    if not result.ok:
        raise ProvisionError("Could not disable fastestmirror plugin", output=result.output)


def ensure_user(sb: Sandbox, user: str, log: RunLog) -> None:
    """Create the unprivileged build account if the image lacks it."""
    if _run(sb, ["id", "-u", user], log).ok:
        return
    result = _run(sb, ["useradd", "-m", user], log)
    if not result.ok:
        raise ProvisionError(f"Could not create user {user!r}", output=result.output)


def provision(
    sb: Sandbox,
    *,
    user: str,
    probe_host: str,
    proxy: Optional[str] = None,
    clock: Optional[Clock] = None,
    log: Optional[RunLog] = None,
    ready_attempts: int = READY_ATTEMPTS,
    ready_interval_sec: float = READY_INTERVAL_SEC,
) -> Sandbox:
    """Create the container for ``sb`` and make it ready for use.

    ``sb.live`` is set as soon as the container exists, so callers that
    clean up on ``sb.live`` still tear it down if a later step fails.

    Raises:
        ProvisionError: If creation, readiness, proxy or user setup fails.
    """
    clock = clock or SystemClock()
    log = log or RunLog()

    log.info("PROVISION", f"Creating {sb.name} from {sb.image}")
    result = sb.runtime.create(sb.image, sb.name)
    if not result.ok:
        raise ProvisionError(f"Failed to create sandbox from {sb.image}", output=result.output)
    sb.live = True
    log.event({"phase": "provision", "sandbox": sb.name, "image": sb.image})

    log.info("PROVISION", f"Waiting for network (resolving {probe_host})")
    if not wait_for_network(
        sb,
        probe_host,
        clock=clock,
        log=log,
        attempts=ready_attempts,
        interval_sec=ready_interval_sec,
    ):
        raise ProvisionError(
            f"Network not ready after {ready_attempts * ready_interval_sec:g}s"
        )

    if proxy:
        log.info("PROVISION", f"Using proxy {proxy}")
        configure_proxy(sb, proxy, log)

    ensure_user(sb, user, log)
    return sb

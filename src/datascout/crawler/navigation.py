"""
Navigation helpers - Resilient page loading and the scripts injected into
captured pages.

Contents:
- Ready-condition ladders for ``page.goto`` (normal and fast mode)
- Error classification (DNS failure vs. HTTP/2 / QUIC protocol failure)
- Init scripts: stealth patches and localStorage seeding
- Page-side scripts: shadow-root aware link collection and auto-scroll
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog


logger = structlog.get_logger(__name__)


STEP_TIMEOUT_MS = 8000
FAST_TIMEOUT_MS = 5000

DNS_ERROR_MARKERS = (
    "ERR_NAME_NOT_RESOLVED",
    "ERR_NAME_RESOLUTION_FAILED",
    "ENOTFOUND",
    "getaddrinfo",
)
PROTOCOL_ERROR_MARKERS = (
    "ERR_HTTP2_PROTOCOL_ERROR",
    "ERR_HTTP2_",
    "ERR_SPDY_PROTOCOL_ERROR",
    "ERR_QUIC_PROTOCOL_ERROR",
)

# Chromium flags for the fallback stages
DISABLE_HTTP2_ARGS = ["--disable-http2"]
STEALTH_ARGS = ["--disable-blink-features=AutomationControlled"]

# Consent dismissal (role button names, then common CMP selectors)
CONSENT_BUTTON_NAME = r"Godta alle|Accept all|Agree|OK"
CONSENT_SELECTORS = "button.message-button.primary, .sp_choice_type_11, [data-choice], .message-button"
CONSENT_TIMEOUT_MS = 1500

SETTLE_TIMEOUT_MS = 4000
SCROLL_SETTLE_TIMEOUT_MS = 3000


@dataclass(frozen=True)
class ReadyStep:
    """One rung of the goto ladder: a load state and how long to wait for it"""
    wait_until: str
    timeout_ms: int


def navigation_ladder(budget_ms: int) -> List[ReadyStep]:
    """
    Ready conditions tried in order by a normal navigation.

    Args:
        budget_ms: Overall navigation budget; bounds the final ``load`` step

    Returns:
        commit (8 s), domcontentloaded (8 s), load (budget, at least 8 s)
    """
    return [
        ReadyStep("commit", STEP_TIMEOUT_MS),
        ReadyStep("domcontentloaded", STEP_TIMEOUT_MS),
        ReadyStep("load", max(budget_ms, STEP_TIMEOUT_MS)),
    ]


def fast_ladder(budget_ms: int) -> List[ReadyStep]:
    """Fast mode only waits for the response to commit"""
    timeout = min(budget_ms, FAST_TIMEOUT_MS) if budget_ms > 0 else FAST_TIMEOUT_MS
    return [ReadyStep("commit", timeout)]


def is_dns_error(error: BaseException) -> bool:
    message = str(error)
    return any(marker in message for marker in DNS_ERROR_MARKERS)


def is_protocol_error(error: BaseException) -> bool:
    message = str(error)
    return any(marker in message for marker in PROTOCOL_ERROR_MARKERS)


async def goto_resilient(page, url: str, ladder: List[ReadyStep]) -> ReadyStep:
    """
    Navigate ``page`` to ``url``, relaxing the ready condition on failure.

    A DNS failure is raised at once since no later step can succeed.

    Args:
        page: Playwright page
        url: Target URL
        ladder: Ready steps, tried in order

    Returns:
        The step that succeeded

    Raises:
        Exception: The error of the last step when every step failed
    """
    last_error: Optional[BaseException] = None
    for step in ladder:
        try:
            logger.debug("goto", url=url, wait_until=step.wait_until, timeout_ms=step.timeout_ms)
            await page.goto(url, wait_until=step.wait_until, timeout=step.timeout_ms)
            return step
        except Exception as e:
            if is_dns_error(e):
                raise
            logger.debug("goto_failed", url=url, wait_until=step.wait_until, error=str(e))
            last_error = e

    if last_error is None:
        raise ValueError("navigation ladder is empty")
    raise last_error


STEALTH_SCRIPT = """
(() => {
  try {
    Object.defineProperty(navigator, 'webdriver', { get: () => false });
    window.chrome = window.chrome || { runtime: {} };
    Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
    Object.defineProperty(navigator, 'platform', { get: () => 'Win32' });
    const query = navigator.permissions && navigator.permissions.query;
    if (query) {
      navigator.permissions.query = (p) =>
        p && p.name === 'notifications'
          ? Promise.resolve({ state: Notification.permission })
          : query.call(navigator.permissions, p);
    }
  } catch (e) {}
})();
"""


def storage_seed_script(seed: Dict[str, Any]) -> str:
    """
    Build an init script writing ``seed`` into localStorage.

    Non-string values are stored as their JSON text.
    """
    entries = {
        str(key): value if isinstance(value, str) else json.dumps(value)
        for key, value in seed.items()
    }
    return (
        "(() => { try { const kv = %s;"
        " for (const [k, v] of Object.entries(kv)) localStorage.setItem(k, v);"
        " } catch (e) {} })();" % json.dumps(entries)
    )


COLLECT_LINKS_JS = """
() => {
  const seen = new Set();
  const out = [];
  function collectFrom(root) {
    root.querySelectorAll('a[href]').forEach((a) => {
      try {
        const abs = new URL(a.getAttribute('href') || '', location.href).toString();
        if (seen.has(abs)) return;
        seen.add(abs);
        out.push({
          href: abs,
          text: (a.textContent || '').trim(),
          parent: location.href,
          parent_title: document.title || '',
        });
      } catch (e) {}
    });
    root.querySelectorAll('*').forEach((el) => el.shadowRoot && collectFrom(el.shadowRoot));
  }
  collectFrom(document);
  return out;
}
"""

AUTO_SCROLL_JS = """
async () => {
  await new Promise((resolve) => {
    let y = 0;
    const id = setInterval(() => {
      y += 300;
      window.scrollTo({ top: y, behavior: 'instant' });
      if (y >= 3000) {
        clearInterval(id);
        resolve();
      }
    }, 200);
  });
}
"""

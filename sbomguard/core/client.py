from datetime import timedelta
from pathlib import Path

import requests
import requests_cache
import structlog
from requests.adapters import HTTPAdapter

from sbomguard.__version__ import __version__

logger = structlog.get_logger('client')


def _logging_hook(response, *args, **kwargs):
    if getattr(response, '_logged', False):
        return
    response._logged = True

    is_cached = getattr(response, 'from_cache', False)
    log_kwargs = {
        'method': response.request.method,
        'url': response.url,
        'status': response.status_code,
        'content_length': len(response.content) if response.content else 0,
        'elapsed': f"{response.elapsed.total_seconds():.3f}s",
        'cached': is_cached,
    }
    if is_cached:
        logger.debug('HTTP Request', _style='dim', **log_kwargs)
    else:
        logger.debug('HTTP Request', **log_kwargs)


def get_http_client(
    cache_name: str | Path | None = '.cache/osv/db.sqlite3',
    expire_after: int = 86400,
    pool_size: int = 32,
) -> requests.Session:
    """
    Returns a pooled requests session for the vulnerability database.

    With a cache name, successful POST lookups are cached on disk keyed by
    request body. Passing None disables caching. Retries are not
    configured on the adapter; the vulnerability client owns retry and backoff.
    """
    if cache_name is not None:
        cache_path = Path(cache_name)
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        session: requests.Session = requests_cache.CachedSession(
            cache_name=str(cache_path),
            backend='sqlite',
            expire_after=timedelta(seconds=expire_after),
            allowable_codes=[200],
            allowable_methods=['GET', 'POST'],
        )
    else:
        session = requests.Session()

    session.hooks['response'].append(_logging_hook)
    session.headers.update({
        'Accept': 'application/json',
        'User-Agent': f"SBOMGuard/{__version__}",
    })

    adapter = HTTPAdapter(
        pool_connections=pool_size,
        pool_maxsize=pool_size,
        max_retries=0,
    )
    session.mount('https://', adapter)
    session.mount('http://', adapter)

    logger.debug(
        'Initialized HTTP Client',
        cache_name=str(cache_name) if cache_name else None,
        expire_after=expire_after,
        pool_size=pool_size,
    )
    return session

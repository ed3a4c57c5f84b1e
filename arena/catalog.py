"""Client-side model catalog: fetched once, guarded against duplicate fetches, abortable."""

import asyncio
import logging

from arena.backends import Backend
from arena.models import ModelInfo

logger = logging.getLogger(__name__)


class ModelCatalog:
    """Holds the models offered to the user.

    A fetch starts at most once per catalog: while one is running, or after
    one has finished, further load() calls return immediately.
    """

    def __init__(self, backend: Backend) -> None:
        self._backend = backend
        self.models: list[ModelInfo] = []
        self.loading = False
        self.loaded = False
        self.error: str | None = None

    async def load(self, abort: asyncio.Event | None = None) -> list[ModelInfo]:
        """Fetch the catalog unless a fetch already started.

        When abort is set before the fetch finishes, the fetch is cancelled
        and the call returns the (still empty) model list without recording
        an error. Other failures are recorded in self.error and re-raised.
        """
        if self.loading or self.loaded:
            logger.debug("Catalog fetch already started, skipping")
            return self.models

        self.loading = True
        aborted: asyncio.Future | None = None
        try:
            fetch = asyncio.ensure_future(self._backend.list_models())
            if abort is None:
                models = await fetch
            else:
                aborted = asyncio.ensure_future(abort.wait())
                done, _ = await asyncio.wait({fetch, aborted}, return_when=asyncio.FIRST_COMPLETED)
                if fetch not in done:
                    fetch.cancel()
                    logger.debug("Catalog fetch aborted")
                    return self.models
                models = fetch.result()
        except Exception as exc:
            self.error = str(exc)
            self.loaded = True
            raise
        finally:
            if aborted is not None:
                aborted.cancel()
            self.loading = False

        self.models = models
        self.loaded = True
        logger.info("Loaded %d models", len(models))
        return models

    def ids(self) -> list[str]:
        return [m.id for m in self.models]

"""
Matrix Interface Thread

Connects to the Matrix homeserver via mautrix-python and keeps the shared
DM room map in step with the account's ``m.direct`` data for as long as the
sync loop runs.

Startup order inside ``run()``:
  1. password login if no access token is configured
  2. build the mautrix client (memory state store, membership dispatcher)
  3. attach the account-data source and fetch the current ``m.direct``
  4. create the shared DMRoomMap through the registry and start it
  5. sync until ``stop()``
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import aiohttp
from mautrix.client import Client
from mautrix.client.dispatcher import MembershipEventDispatcher
from mautrix.client.state_store.memory import MemoryStateStore
from mautrix.errors import MUnknownToken
from mautrix.types import UserID

from dmroommap.core.dm_room_map import DMRoomMap
from dmroommap.core.registry import DMRoomMapRegistry
from dmroommap.infra.event_bus import EventBus
from dmroommap.interfaces.matrix_source import MatrixAccountDataSource

logger = logging.getLogger(__name__)


@dataclass
class MatrixConfig:
    homeserver: str
    user_id: str
    access_token: str = ""
    device_id: str = ""
    password: str = ""
    device_name: str = "dmroommap"


class MatrixThread:
    """
    Runs as an asyncio task.  After construction, call ``run()``.
    The started map is available from the registry while ``run()`` is active.
    """

    def __init__(self, config: MatrixConfig, registry: DMRoomMapRegistry,
                 event_bus: Optional[EventBus] = None) -> None:
        self._cfg = config
        self._registry = registry
        self._bus = event_bus
        self._client: Optional[Client] = None
        self._source: Optional[MatrixAccountDataSource] = None
        self._dm_map: Optional[DMRoomMap] = None
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run(self) -> None:
        self._running = True

        if not self._cfg.access_token and self._cfg.password:
            await self._auto_login()
        elif not self._cfg.access_token:
            logger.error(
                "Matrix: no access_token and no password configured. "
                "Set at least one in config.yaml.",
            )
            self._running = False
            return

        try:
            await self._connect_and_serve()
        except asyncio.CancelledError:
            logger.info("Matrix task cancelled")
        except MUnknownToken:
            logger.error(
                "Matrix access token is invalid or expired.\n"
                "  Add 'password' to the matrix section of config.yaml for automatic\n"
                "  re-login, or replace access_token and device_id with fresh values\n"
                "  from %s/_matrix/client/v3/login.",
                self._cfg.homeserver,
            )
        except Exception as exc:  # noqa: BLE001
            logger.error("Matrix fatal error: %s", exc, exc_info=True)
        finally:
            await self._cleanup()
            self._running = False

    def stop(self) -> None:
        self._running = False
        if self._client is not None:
            self._client.stop()

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def _connect_and_serve(self) -> None:
        """Set up client, source and map, then sync.  Blocks until stop().

        Raises MUnknownToken if the access token is invalid.
        """
        client = self._setup_client()
        self._client = client

        source = MatrixAccountDataSource(client, self._bus)
        source.attach()
        self._source = source
        await source.prime()

        self._dm_map = self._registry.create(source)
        self._dm_map.start()
        logger.info("Matrix connected as %s. Tracking m.direct.", self._cfg.user_id)

        # The initial sync carries room state and the current m.direct, which
        # the source needs for partner guesses and invite hints.
        client.ignore_initial_sync = False
        await client.start(filter_data=None)

    async def _cleanup(self) -> None:
        """Stop the map, drain pending writes and close the HTTP session."""
        if self._dm_map is not None:
            self._dm_map.stop()
            self._dm_map = None
        if self._source is not None:
            self._source.detach()
            await self._source.close()
            self._source = None
        if self._client is not None:
            self._client.stop()
            try:
                await self._client.api.session.close()
            except Exception:  # noqa: BLE001
                logger.debug("Closing Matrix HTTP session failed", exc_info=True)
            self._client = None

    async def _auto_login(self) -> None:
        """Login via the Matrix password API and keep the credentials in memory."""
        hs = self._cfg.homeserver.rstrip("/")
        url = f"{hs}/_matrix/client/v3/login"
        payload = {
            "type": "m.login.password",
            "identifier": {"type": "m.id.user", "user": self._cfg.user_id},
            "password": self._cfg.password,
            "initial_device_display_name": self._cfg.device_name,
        }
        if self._cfg.device_id:
            payload["device_id"] = self._cfg.device_id
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload) as resp:
                data = await resp.json()

        if "access_token" not in data:
            raise RuntimeError(
                f"Matrix login failed: {data.get('error', 'unknown error')} "
                f"({data.get('errcode', '')})"
            )

        self._cfg.access_token = data["access_token"]
        self._cfg.device_id = data["device_id"]
        logger.info("Auto-login successful. device_id=%s", self._cfg.device_id)

    # ------------------------------------------------------------------
    # Setup helpers
    # ------------------------------------------------------------------

    def _setup_client(self) -> Client:
        if not self._cfg.device_id:
            raise ValueError(
                "matrix.device_id is required.  "
                "Set 'password' in config.yaml to log in automatically, "
                "or obtain it from the login API response."
            )

        client = Client(
            mxid=UserID(self._cfg.user_id),
            device_id=self._cfg.device_id,
            base_url=self._cfg.homeserver,
            token=self._cfg.access_token,
            state_store=MemoryStateStore(),
        )
        # Translate m.room.member events into InternalEventType.* (JOIN, INVITE, LEAVE, …)
        client.add_dispatcher(MembershipEventDispatcher)

        logger.info(
            "Running as device_id=%s, homeserver=%s",
            self._cfg.device_id, self._cfg.homeserver,
        )
        return client

import logging
from typing import Dict, Any, Optional, Union

from .codec import DATATYPES, decode_data, encode_data, generate_seed
from .config import StashConfig, load_config
from .errors import IncorrectDatatypeError
from .ledger import SQLiteLedger
from .ledger_api import LedgerGateway
from .persist_engine import PersistEngine
from .retrieve_engine import RetrieveEngine

logger = logging.getLogger(__name__)


class Stash:
    """
    Orchestrator: owns the ledger gateway, PersistEngine and RetrieveEngine,
    and exposes save()/load() over encoded, optionally encrypted payloads.
    """

    def __init__(
        self,
        config: StashConfig,
        gateway: Optional[LedgerGateway] = None,
        datatype: Optional[str] = None,
    ):
        self.config = config
        self.datatype = datatype or config.payload.datatype
        if self.datatype not in DATATYPES:
            raise IncorrectDatatypeError(f'No valid "datatype" was passed: {self.datatype!r}')

        self.seed = config.ledger.seed or generate_seed()

        if gateway is None:
            logger.info("Using SQLite ledger %s", config.ledger.db_path)
            gateway = SQLiteLedger(
                config.ledger.db_path,
                min_weight_magnitude=config.ledger.min_weight_magnitude,
                depth=config.ledger.depth,
                message_length=config.chunking.message_length,
            )
        self.gateway = gateway

        self.persist_engine = PersistEngine(
            config.chunking,
            config.retry,
            self.gateway,
            self.seed,
            config.ledger.tag,
        )
        self.retrieve_engine = RetrieveEngine(config.retry, self.gateway)

    # ------------------------------------------------------------------
    # Public API used by CLI
    # ------------------------------------------------------------------

    def save(
        self,
        data: Union[str, bytes],
        secret: Optional[str] = None,
        datatype: Optional[str] = None,
    ) -> str:
        """
        Persist data and return the entry hash needed to load it again.
        Omitting secret stores the data unencrypted.
        """
        datastring = encode_data(data, datatype or self.datatype, secret)
        return self.persist_engine.persist(datastring)

    def load(
        self,
        entry_hash: str,
        secret: Optional[str] = None,
        datatype: Optional[str] = None,
    ) -> Union[str, bytes]:
        """Load data previously persisted under entry_hash."""
        datastring = self.retrieve_engine.retrieve(entry_hash)
        return decode_data(datastring, datatype or self.datatype, secret)

    def get_status(self) -> Dict[str, Any]:
        """Statistics of the last save and load plus the ledger record count."""
        status: Dict[str, Any] = {
            "datatype": self.datatype,
            "tag": self.config.ledger.tag,
            "last_save": None,
            "last_load": self.retrieve_engine.get_load_status(),
        }

        last_save = self.persist_engine.last_save
        if last_save is not None:
            status["last_save"] = self.persist_engine.get_save_status(last_save.entry_id)

        count_records = getattr(self.gateway, "count_records", None)
        if count_records is not None:
            status["records"] = count_records()
            status["stash_records"] = count_records(self.config.ledger.tag)
        return status

    def close(self) -> None:
        self.gateway.close()


def create_stash(
    config_path: Optional[str] = None,
    db_path: Optional[str] = None,
    datatype: Optional[str] = None,
    seed: Optional[str] = None,
) -> Stash:
    """Create and configure a stash backed by the local SQLite ledger."""
    config = load_config(config_path)

    if db_path is not None:
        config.ledger.db_path = db_path
    if seed is not None:
        config.ledger.seed = seed

    return Stash(config, datatype=datatype)

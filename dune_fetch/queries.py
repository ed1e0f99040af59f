"""Token-holder queries run against Dune on every fetch.

Each query is saved under a fixed Dune query id before execution, so the
SQL shipped in dune_fetch/sql/ is what actually runs. Parameters are bound
at save time; execution itself is triggered without runtime parameters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal

from dune_fetch.config import CUTOFF_BLOCKS, SQL_DIR
from dune_fetch.constants import BAL, BVECVX

ParameterType = Literal["number", "date", "text"]


@dataclass(frozen=True)
class QueryParameter:
    key: str
    type: ParameterType
    value: str

    def to_dict(self) -> dict:
        return {"key": self.key, "type": self.type, "value": self.value}


@dataclass(frozen=True)
class QueryDefinition:
    """One saved Dune query plus the parameter values it runs with."""

    query_id: int
    sql_file: str
    name: str
    dataset_id: int
    parameters: tuple[QueryParameter, ...] = field(default_factory=tuple)

    def parameter_dicts(self) -> list[dict]:
        return [p.to_dict() for p in self.parameters]


def read_sql(definition: QueryDefinition, sql_dir: Path = SQL_DIR) -> str:
    return (Path(sql_dir) / definition.sql_file).read_text(encoding="utf-8")


def block_number_param(network: str, cutoff_blocks: dict[str, str | int | None] | None = None) -> QueryParameter:
    blocks = CUTOFF_BLOCKS if cutoff_blocks is None else cutoff_blocks
    block = blocks.get(network)
    if block in (None, ""):
        raise ValueError(f"No cutoff block configured for {network}")
    return QueryParameter(key="BlockNumber", type="number", value=str(int(block)))


def address_param(address: str) -> QueryParameter:
    return QueryParameter(key="Address", type="text", value=address)


def build_queries(cutoff_blocks: dict[str, str | int | None] | None = None) -> dict[str, QueryDefinition]:
    """Queries keyed by their name in the output bundle, in run order.

    Arbitrum BAL holders are not included; Dune has no Arbitrum dataset.
    """
    mainnet_block = block_number_param("mainnet", cutoff_blocks)
    polygon_block = block_number_param("polygon", cutoff_blocks)
    return {
        "vlCVX": QueryDefinition(
            query_id=855391,
            sql_file="mainnet_vlcvx_holders.sql",
            name="vlCVX holders",
            dataset_id=4,
            parameters=(mainnet_block,),
        ),
        "balMainnet": QueryDefinition(
            query_id=493891,
            sql_file="token_balances.sql",
            name="BAL holders (Mainnet)",
            dataset_id=4,
            parameters=(mainnet_block, address_param(BAL["mainnet"])),
        ),
        "balPolygon": QueryDefinition(
            query_id=511724,
            sql_file="token_balances.sql",
            name="BAL holders (Polygon)",
            dataset_id=7,
            parameters=(polygon_block, address_param(BAL["polygon"])),
        ),
        "bveCVX": QueryDefinition(
            query_id=855374,
            sql_file="token_balances.sql",
            name="bveCVX holders (Mainnet)",
            dataset_id=4,
            parameters=(mainnet_block, address_param(BVECVX)),
        ),
    }

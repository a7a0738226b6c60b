# aimuse/orchestrator.py
import uuid
import time
import datetime
from enum import Enum
from typing import Dict, Any, Optional, List

# Import modules (not bare functions) so monkeypatching in tests works correctly
import aimuse.processors.metadata_generator as _metadata_generator
import aimuse.connectors.content_store as _content_store
from aimuse import monitoring
from aimuse import db as dbmod
from aimuse.connectors.chain_client import BASE_MAINNET_CHAIN_ID, ChainClient
from aimuse.errors import (
    E_CHAIN_TX, E_INTERNAL, E_METADATA_FAIL, E_MIRROR_NOT_UPDATED, E_UPLOAD_FAIL,
    ValidationError,
)
from aimuse.utils import format_nft_id, get_explorer_url

logger = monitoring.logger

MINT = "mint"
UPDATE = "update"


class FlowStage(str, Enum):
    IDLE = "idle"
    GENERATING_METADATA = "generating_metadata"
    UPLOADING_CONTENT = "uploading_content"
    SUBMITTING_CHAIN_TX = "submitting_chain_tx"
    PERSISTING_RECORD = "persisting_record"
    DONE = "done"
    FAILED = "failed"


class FlowState:
    """Stage tracker for one flow instance. Stages only move forward."""

    def __init__(self, flow: str, flow_id: Optional[str] = None):
        self.flow = flow
        self.flow_id = flow_id or str(uuid.uuid4())
        self.stage = FlowStage.IDLE
        self.stages: List[str] = [FlowStage.IDLE.value]
        self.started = time.time()

    def advance(self, stage: FlowStage):
        self.stage = stage
        self.stages.append(stage.value)


class NFTLifecycleOrchestrator:
    """
    Sequences metadata generation -> content upload -> chain write -> mirror
    persistence for mint and update flows.

    No stage starts before the previous one succeeded and nothing is rolled
    back: a confirmed chain write whose mirror write fails is reported as
    E_MIRROR_NOT_UPDATED with chain_confirmed=True so the caller can retry
    persistence alone.
    """

    def __init__(self, chain_client: Optional[ChainClient] = None):
        self.chain_client = chain_client or ChainClient()

    def _now_iso(self) -> str:
        return datetime.datetime.utcnow().isoformat() + "Z"

    # ------------------------------------------------------------------
    # Result helpers
    # ------------------------------------------------------------------
    def _fail(self, state: FlowState, error_code: str, message: str, **extra) -> Dict[str, Any]:
        failed_stage = state.stage.value
        monitoring.observe_flow(state.started, state.flow, "fail", failed_stage)
        logger.warning(
            "Flow failed",
            extra={"flow": state.flow, "flow_id": state.flow_id, "stage": failed_stage, "error_code": error_code},
        )
        resp = {
            "flow_id": state.flow_id,
            "flow": state.flow,
            "status": "error",
            "stage": failed_stage,
            "stages": state.stages + [FlowStage.FAILED.value],
            "error_code": error_code,
            "message": message,
            "chain_confirmed": False,
            "finished_at": self._now_iso(),
        }
        resp.update(extra)
        return resp

    def _chain_failure(self, state: FlowState, connection, default_message: str, **extra) -> Dict[str, Any]:
        err = getattr(connection, "last_error", None)
        return self._fail(
            state,
            err.error_code if err is not None else E_CHAIN_TX,
            err.message if err is not None else default_message,
            **extra
        )

    def _confirmed_failure(self, state: FlowState, exc: Exception, token_id, tx_hash, token_uri) -> Dict[str, Any]:
        """Unexpected error after the chain write confirmed; the on-chain result is kept."""
        return self._fail(
            state, E_INTERNAL, f"Succeeded on-chain, then unexpected error: {exc}",
            chain_confirmed=True,
            tokenId=token_id,
            transactionHash=tx_hash,
            tokenURI=token_uri,
        )

    def _generate(self, state: FlowState, prompt: str):
        """Stages 1-2. Returns (metadata, token_uri, failure_response_or_None)."""
        state.advance(FlowStage.GENERATING_METADATA)
        try:
            image = _metadata_generator.generate_image(prompt)
            metadata = _metadata_generator.build_metadata(prompt, image)
        except Exception as e:
            return None, None, self._fail(state, E_METADATA_FAIL, f"Metadata generation failed: {e}")

        state.advance(FlowStage.UPLOADING_CONTENT)
        try:
            token_uri = _content_store.upload_metadata(metadata)
        except Exception as e:
            return metadata, None, self._fail(state, E_UPLOAD_FAIL, f"Metadata upload failed: {e}")
        return metadata, token_uri, None

    def _persist(self, state: FlowState, record: Dict[str, Any], connection=None, **extra) -> Dict[str, Any]:
        token_id = record["tokenId"]
        try:
            if state.flow == MINT:
                stored = dbmod.create_nft(record)
            else:
                fields = {k: v for k, v in record.items() if k != "tokenId"}
                stored = dbmod.apply_update(token_id, fields)
        except Exception as e:
            cause = getattr(e, "error_code", E_INTERNAL)
            logger.error(
                "Chain write confirmed but mirror not updated",
                extra={"flow": state.flow, "token_id": token_id, "cause": cause},
            )
            return self._fail(
                state, E_MIRROR_NOT_UPDATED,
                f"Succeeded on-chain, mirror not updated ({cause}): {e}",
                chain_confirmed=True,
                cause=cause,
                tokenId=token_id,
                transactionHash=record.get("transactionHash"),
                tokenURI=record.get("tokenURI"),
                record=record,
                **extra
            )

        state.advance(FlowStage.DONE)
        monitoring.observe_flow(state.started, state.flow, "success", state.stage.value)
        tx_hash = record.get("transactionHash")
        resp = {
            "flow_id": state.flow_id,
            "flow": state.flow,
            "status": "success",
            "stage": state.stage.value,
            "stages": state.stages,
            "tokenId": token_id,
            "displayId": format_nft_id(token_id),
            "transactionHash": tx_hash,
            "tokenURI": record.get("tokenURI"),
            "record": stored,
            "chain_confirmed": True,
            "finished_at": self._now_iso(),
        }
        if connection is not None and tx_hash:
            resp["explorerUrl"] = get_explorer_url(
                tx_hash, is_testnet=getattr(connection, "chain_id", None) != BASE_MAINNET_CHAIN_ID
            )
        resp.update(extra)
        return resp

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def generate_metadata(self, prompt: str) -> Dict[str, Any]:
        """Generate and upload metadata only. Raises on failure."""
        image = _metadata_generator.generate_image(prompt)
        metadata = _metadata_generator.build_metadata(prompt, image)
        token_uri = _content_store.upload_metadata(metadata)
        return {"tokenURI": token_uri, "metadata": metadata}

    def mint(self, prompt: str, connection) -> Dict[str, Any]:
        """
        Mint flow:
        1. Generate metadata
        2. Upload metadata -> tokenURI
        3. Mint on-chain (no record without a confirmed mint)
        4. Create the mirror record
        """
        state = FlowState(MINT)
        token_uri = minted = None
        try:
            metadata, token_uri, failure = self._generate(state, prompt)
            if failure:
                return failure

            state.advance(FlowStage.SUBMITTING_CHAIN_TX)
            minted = self.chain_client.mint(token_uri, connection)
            if minted is None:
                return self._chain_failure(state, connection, "Mint transaction failed", tokenURI=token_uri)

            record = {
                "tokenId": minted.token_id,
                "owner": connection.address,
                "prompt": prompt,
                "tokenURI": token_uri,
                "image": metadata["image"],
                "name": metadata["name"],
                "description": metadata["description"],
                "attributes": metadata.get("attributes", []),
                "transactionHash": minted.tx_hash,
            }
            state.advance(FlowStage.PERSISTING_RECORD)
            return self._persist(state, record, connection=connection, metadata=metadata)
        except Exception as e:
            logger.exception("Unexpected error in mint flow")
            if minted is None:
                return self._fail(state, E_INTERNAL, f"Unexpected error: {e}")
            return self._confirmed_failure(state, e, minted.token_id, minted.tx_hash, token_uri)

    def update(self, token_id: int, prompt: str, connection) -> Dict[str, Any]:
        """
        Update flow: same shape as mint with updateMetadata on-chain and
        apply_update on the mirror.
        """
        state = FlowState(UPDATE)
        token_uri = tx_hash = None
        try:
            metadata, token_uri, failure = self._generate(state, prompt)
            if failure:
                return failure

            state.advance(FlowStage.SUBMITTING_CHAIN_TX)
            tx_hash = self.chain_client.update_metadata(token_id, token_uri, connection)
            if tx_hash is None:
                return self._chain_failure(
                    state, connection, "Metadata update transaction failed",
                    tokenId=token_id, tokenURI=token_uri,
                )

            record = {
                "tokenId": int(token_id),
                "prompt": prompt,
                "tokenURI": token_uri,
                "image": metadata["image"],
                "name": metadata["name"],
                "description": metadata["description"],
                "attributes": metadata.get("attributes", []),
                "transactionHash": tx_hash,
            }
            state.advance(FlowStage.PERSISTING_RECORD)
            return self._persist(state, record, connection=connection, metadata=metadata)
        except Exception as e:
            logger.exception("Unexpected error in update flow")
            if tx_hash is None:
                return self._fail(state, E_INTERNAL, f"Unexpected error: {e}")
            return self._confirmed_failure(state, e, token_id, tx_hash, token_uri)

    def retry_persistence(self, result: Dict[str, Any]) -> Dict[str, Any]:
        """
        Re-run only the mirror write of a flow that ended in E_MIRROR_NOT_UPDATED.
        Never touches the chain.
        """
        if result.get("error_code") != E_MIRROR_NOT_UPDATED or not result.get("record"):
            raise ValidationError("Only flows that failed with E_MIRROR_NOT_UPDATED can be retried")
        state = FlowState(result.get("flow", MINT), flow_id=result.get("flow_id"))
        state.advance(FlowStage.PERSISTING_RECORD)
        logger.info("Retrying mirror persistence", extra={"flow_id": state.flow_id, "token_id": result["record"].get("tokenId")})
        extra = {"metadata": result["metadata"]} if result.get("metadata") else {}
        return self._persist(state, result["record"], **extra)

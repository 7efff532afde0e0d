"""CLI entrypoint for RAG Queue."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Optional

import requests
import typer

from ragqueue.core.config import Settings
from ragqueue.core.logging import configure_logging
from ragqueue.db.sqlite import SQLiteDatabase
from ragqueue.ingest.documents import DocumentRepository
from ragqueue.ingest.embeddings import create_embedding_provider
from ragqueue.ingest.pipeline import IngestPipeline
from ragqueue.queue.jobs import JobQueue
from ragqueue.queue.worker import Worker
from ragqueue.retrieval.vector_store import VectorStore

app = typer.Typer(name="ragq", help="RAG Queue command-line interface")

DEFAULT_HOST = "http://127.0.0.1:8000"


def _resolve_host(override: Optional[str]) -> str:
    if override:
        return override.rstrip("/")
    env_host = os.environ.get("RAGQ_HOST")
    if env_host:
        return env_host.rstrip("/")
    return DEFAULT_HOST


def _request(method: str, path: str, host: Optional[str] = None, **kwargs) -> requests.Response:
    base = _resolve_host(host)
    url = f"{base}{path}"
    try:
        resp = requests.request(method, url, timeout=60, **kwargs)
    except requests.RequestException as exc:
        typer.echo(f"Request failed: {exc}", err=True)
        raise typer.Exit(code=1) from exc
    if not resp.ok:
        try:
            detail = resp.json()
        except ValueError:
            detail = resp.text
        typer.echo(f"Request failed ({resp.status_code}): {detail}", err=True)
        raise typer.Exit(code=1)
    return resp


def _load_settings(config: Optional[Path]) -> Settings:
    return Settings.from_yaml(config)


def _open_database(settings: Settings) -> SQLiteDatabase:
    db = SQLiteDatabase(settings.db_path)
    db.ensure_schema()
    return db


@app.command()
def worker(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to a YAML config file"),
    worker_id: Optional[str] = typer.Option(None, "--id", help="Worker identifier recorded on claimed jobs"),
    max_jobs: Optional[int] = typer.Option(None, "--max-jobs", min=1, help="Exit after this many jobs"),
    drain: bool = typer.Option(False, "--drain", help="Exit once the queue has no eligible job"),
) -> None:
    """Run the ingestion worker loop in this process."""
    configure_logging()
    settings = _load_settings(config)
    db = _open_database(settings)
    provider = create_embedding_provider(settings)
    store = VectorStore(db, model=provider.model_id)
    loop = Worker.from_settings(
        settings,
        queue=JobQueue.from_settings(db, settings),
        documents=DocumentRepository(db),
        pipeline=IngestPipeline.from_settings(settings, provider, store),
        worker_id=worker_id,
    )
    loop.install_signal_handlers()
    try:
        processed = loop.run(max_jobs=max_jobs, exit_when_idle=drain)
    finally:
        provider.close()
        db.close()
    typer.echo(json.dumps({"processed": processed}))


@app.command()
def reap(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to a YAML config file"),
    stale_after: Optional[float] = typer.Option(None, "--stale-after", help="Seconds without progress"),
) -> None:
    """Requeue jobs abandoned in the processing state."""
    settings = _load_settings(config)
    with _open_database(settings) as db:
        queue = JobQueue.from_settings(db, settings)
        reaped = queue.reap_stale(stale_after if stale_after is not None else settings.stale_after_seconds)
    typer.echo(json.dumps({"reaped": reaped}, indent=2))


@app.command()
def cleanup(
    config: Optional[Path] = typer.Option(None, "--config", help="Path to a YAML config file"),
    older_than_days: Optional[float] = typer.Option(None, "--older-than-days", help="Retention window"),
) -> None:
    """Delete finished jobs older than the retention window."""
    settings = _load_settings(config)
    with _open_database(settings) as db:
        queue = JobQueue.from_settings(db, settings)
        seconds = older_than_days * 86400 if older_than_days is not None else None
        deleted = queue.cleanup(seconds)
    typer.echo(json.dumps({"deleted": deleted}))


@app.command()
def enqueue(
    document_id: str = typer.Argument(..., help="Source document identifier"),
    collection_id: str = typer.Argument(..., help="Owning collection"),
    file_url: str = typer.Argument(..., help="Where the document bytes live"),
    file_name: Optional[str] = typer.Option(None, "--name", help="Display name; defaults to the URL basename"),
    file_type: Optional[str] = typer.Option(None, "--type", help="Declared content type"),
    owner_id: Optional[str] = typer.Option(None, "--owner", help="Owner identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Enqueue ingestion of one document."""
    payload = {
        "document_id": document_id,
        "collection_id": collection_id,
        "file_url": file_url,
        "file_name": file_name or file_url.rstrip("/").rsplit("/", 1)[-1],
        "file_type": file_type,
        "owner_id": owner_id,
    }
    resp = _request("POST", "/jobs/ingest", host=host, json=payload)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def job(
    job_id: str = typer.Argument(..., help="Job identifier"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show one job."""
    resp = _request("GET", f"/jobs/{job_id}", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def stats(
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show job counts per status."""
    resp = _request("GET", "/queue/stats", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def retrieve(
    q: str = typer.Argument(..., help="Query text"),
    collection_id: str = typer.Option(..., "--collection", help="Collection to search"),
    top_k: Optional[int] = typer.Option(None, "--top-k", help="Number of matches to return"),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="Minimum cosine similarity"),
    hybrid: Optional[bool] = typer.Option(None, "--hybrid/--semantic", help="Blend keyword ranking into the results"),
    keyword_weight: Optional[float] = typer.Option(None, "--keyword-weight", help="Weight of the keyword ranking (0-1)"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Retrieve context for a query."""
    payload: dict[str, object] = {"query": q, "collection_id": collection_id}
    if top_k is not None:
        payload["top_k"] = top_k
    if threshold is not None:
        payload["similarity_threshold"] = threshold
    if hybrid is not None:
        payload["hybrid"] = hybrid
    if keyword_weight is not None:
        payload["keyword_weight"] = keyword_weight
    resp = _request("POST", "/retrieve", host=host, json=payload)
    typer.echo(json.dumps(resp.json(), indent=2))


@app.command()
def status(
    collection_id: str = typer.Argument(..., help="Collection to check"),
    host: Optional[str] = typer.Option(None, "--host", help="Override backend host"),
) -> None:
    """Show whether a collection is ready for retrieval."""
    resp = _request("GET", f"/collections/{collection_id}/status", host=host)
    typer.echo(json.dumps(resp.json(), indent=2))


if __name__ == "__main__":
    app()

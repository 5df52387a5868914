"""AstroWatcher package initialization."""

from .db import Database
from .errors import (
    AstroWatcherError,
    ContentInvalid,
    FetchExhausted,
    HttpError,
    NetworkError,
    ParseError,
)
from .export import export_csv, export_xlsx, write_csv
from .fetcher import ResilientFetcher
from .filtering import ListingFilter, sort_records
from .models import FilterCriteria, ListingRecord, RunSummary, SortKey
from .orchestrator import PaginationOrchestrator, RunMode
from .parser import parse_listings
from .prober import ProxyProber
from .proxies import ProxyDirectory
from .runner import AstroWatcherRunner, build_runner

__all__ = [
    "AstroWatcherError",
    "AstroWatcherRunner",
    "ContentInvalid",
    "Database",
    "FetchExhausted",
    "FilterCriteria",
    "HttpError",
    "ListingFilter",
    "ListingRecord",
    "NetworkError",
    "PaginationOrchestrator",
    "ParseError",
    "ProxyDirectory",
    "ProxyProber",
    "ResilientFetcher",
    "RunMode",
    "RunSummary",
    "SortKey",
    "build_runner",
    "export_csv",
    "export_xlsx",
    "parse_listings",
    "sort_records",
    "write_csv",
]

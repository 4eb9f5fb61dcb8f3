"""Tests for schemas.models."""

import pytest
from pydantic import ValidationError

from fakes import make_chunk
from schemas.models import SearchRequest, SearchResult


def test_search_result_requires_match_type():
    with pytest.raises(ValidationError):
        SearchResult(chunk=make_chunk("c1"), score=0.5)


def test_search_result_rejects_unknown_match_type():
    with pytest.raises(ValidationError):
        SearchResult(chunk=make_chunk("c1"), score=0.5, match_type="fuzzy")


def test_search_request_rejects_empty_tenant():
    with pytest.raises(ValidationError):
        SearchRequest(tenant_id="", query="benefits")

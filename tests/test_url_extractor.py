"""Tests for media info extraction"""

import pytest

from ytdl_orchestrator.exceptions import InfoExtractionError, InvalidUrlError
from ytdl_orchestrator.url_extractor import MediaInfoExtractor, summarize_yt_dlp_error

from conftest import media_url

pytestmark = pytest.mark.asyncio


async def test_single_url_returns_document(fake_yt_dlp):
    info = await MediaInfoExtractor(str(fake_yt_dlp)).get_media_info(media_url('abc'))
    assert info == {'id': 'abc', 'webpage_url': media_url('abc')}


async def test_several_urls_return_list(fake_yt_dlp):
    info = await MediaInfoExtractor(str(fake_yt_dlp)).get_media_info([media_url('a'), media_url('b')])
    assert [doc['id'] for doc in info] == ['a', 'b']


async def test_tool_error_message_is_parsed(fake_yt_dlp):
    with pytest.raises(InfoExtractionError, match='Unsupported URL'):
        await MediaInfoExtractor(str(fake_yt_dlp)).get_media_info(media_url('x', fail=1))


async def test_invalid_url_rejected_before_running(tmp_path):
    with pytest.raises(InvalidUrlError):
        await MediaInfoExtractor(str(tmp_path / 'missing')).get_media_info('not a url')


async def test_missing_executable(tmp_path):
    with pytest.raises(InfoExtractionError, match='not found'):
        await MediaInfoExtractor(str(tmp_path / 'missing')).get_media_info(media_url())


async def test_error_summary_prefers_error_line():
    stderr = "WARNING: something odd\nERROR: [youtube] abc: Video unavailable\nmore detail\n"
    assert summarize_yt_dlp_error(stderr) == '[youtube] abc: Video unavailable'
    assert summarize_yt_dlp_error("first\nlast line\n") == 'last line'
    assert summarize_yt_dlp_error('  ') == 'yt-dlp returned an error with no output.'
    assert summarize_yt_dlp_error('ERROR: ' + 'x' * 300).endswith('...')

import base64
from dataclasses import replace

import cloudinary.exceptions
import pytest
import requests

from armazenamento import (
    CloudinaryStorage,
    GitHubStorage,
    NotFoundError,
    ReceiptPublisher,
    get_storage,
)
from comprovante import ReceiptDocument
from conftest import FakeResponse, FakeSession

DOC = ReceiptDocument(content=b'%PDF-1.4 teste', filename='comprovante-pix-1.pdf')


def test_fallback_when_no_storage_configured(publisher):
    locator = publisher.publish(DOC, base_url='http://localhost:3000/')

    assert locator.provider == 'local'
    assert locator.url.startswith('http://localhost:3000/comprovante/')
    assert locator.download_url == f"{locator.url}?download=true"
    receipt_id = locator.url.rsplit('/', 1)[1]
    assert publisher.get(receipt_id) == DOC


def test_public_base_url_wins_over_request_url(config):
    publisher = ReceiptPublisher(replace(config, public_base_url='https://pix.example.com'))
    locator = publisher.publish(DOC, base_url='http://127.0.0.1/')
    assert locator.url.startswith('https://pix.example.com/comprovante/')


def test_each_fallback_gets_a_fresh_id(publisher):
    first = publisher.publish(DOC)
    second = publisher.publish(DOC)
    assert first.url != second.url


def test_get_unknown_receipt_raises(publisher):
    with pytest.raises(NotFoundError):
        publisher.get('nao-existe')


def test_fallback_store_is_bounded(config):
    publisher = ReceiptPublisher(replace(config, receipt_cache_maxsize=2))
    for _ in range(5):
        publisher.publish(DOC)
    assert publisher.local_count() == 2


def test_fallback_entries_expire(config):
    now = [0.0]
    publisher = ReceiptPublisher(replace(config, receipt_cache_ttl=10), timer=lambda: now[0])
    locator = publisher.publish(DOC)
    receipt_id = locator.url.rsplit('/', 1)[1]

    now[0] = 11.0
    with pytest.raises(NotFoundError):
        publisher.get(receipt_id)


def test_github_upload_success(config):
    session = FakeSession([FakeResponse(201, {'content': {
        'html_url': 'https://github.com/org/repo/blob/main/comprovantes/comprovante-pix-1.pdf',
        'download_url': 'https://raw.githubusercontent.com/org/repo/main/comprovantes/comprovante-pix-1.pdf',
    }})])
    storage = GitHubStorage('gh-token', 'org/repo', session=session)
    publisher = ReceiptPublisher(config, storage=storage)

    locator = publisher.publish(DOC)

    assert locator.provider == 'github'
    assert locator.download_url.startswith('https://raw.githubusercontent.com/')
    call = session.calls[0]
    assert call['method'] == 'PUT'
    assert call['url'] == 'https://api.github.com/repos/org/repo/contents/comprovantes/comprovante-pix-1.pdf'
    assert base64.b64decode(call['json']['content']) == DOC.content
    assert call['json']['branch'] == 'main'
    assert call['headers']['Authorization'] == 'Bearer gh-token'


@pytest.mark.parametrize('result', [
    FakeResponse(422, {'message': 'sha missing'}),
    FakeResponse(201, {'unexpected': True}),
    requests.ConnectionError('offline'),
])
def test_github_failure_falls_back_to_local(config, result):
    storage = GitHubStorage('gh-token', 'org/repo', session=FakeSession([result]))
    publisher = ReceiptPublisher(config, storage=storage)

    locator = publisher.publish(DOC, base_url='http://localhost:3000')

    assert locator.provider == 'local'
    assert publisher.local_count() == 1


class FakeUploader:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.calls = []

    def __call__(self, file, **options):
        self.calls.append((file, options))
        if self.error is not None:
            raise self.error
        return self.result


def test_cloudinary_upload_as_raw_file(config):
    uploader = FakeUploader({'secure_url': 'https://res.cloudinary.com/demo/raw/upload/x.pdf'})
    storage = CloudinaryStorage('demo', 'key', 'secret', timeout=5, uploader=uploader)

    locator = ReceiptPublisher(config, storage=storage).publish(DOC)

    assert locator.provider == 'cloudinary'
    assert locator.url == locator.download_url == 'https://res.cloudinary.com/demo/raw/upload/x.pdf'
    file, options = uploader.calls[0]
    assert file.startswith('data:application/pdf;base64,')
    assert base64.b64decode(file.split(',', 1)[1]) == DOC.content
    assert options['resource_type'] == 'raw'
    assert options['public_id'] == 'comprovantes/comprovante-pix-1.pdf'
    assert options['cloud_name'] == 'demo'
    assert options['api_key'] == 'key' and options['api_secret'] == 'secret'
    assert options['timeout'] == 5


@pytest.mark.parametrize('uploader', [
    FakeUploader(error=cloudinary.exceptions.Error('Invalid Signature')),
    FakeUploader({'public_id': 'sem-url'}),
])
def test_cloudinary_failure_falls_back_to_local(config, uploader):
    storage = CloudinaryStorage('demo', 'key', 'secret', uploader=uploader)
    locator = ReceiptPublisher(config, storage=storage).publish(DOC)
    assert locator.provider == 'local'


def test_get_storage_selection(config):
    assert get_storage(config) is None
    assert get_storage(replace(config, storage_provider='github')) is None
    github = get_storage(replace(config, storage_provider='github', github_token='t', github_repo='o/r'))
    assert isinstance(github, GitHubStorage)
    cld = get_storage(replace(config, storage_provider='cloudinary', cloudinary_cloud_name='c',
                                     cloudinary_api_key='k', cloudinary_api_secret='s'))
    assert isinstance(cld, CloudinaryStorage)
    assert get_storage(replace(config, storage_provider='s3')) is None

"""
Publicação dos comprovantes.

Envia o PDF para um armazenamento externo (repositório GitHub via API REST ou
Cloudinary via SDK oficial).
Se nenhum estiver configurado, ou se o envio falhar, o comprovante fica num
cache em memória com capacidade e validade limitadas e é servido pelo próprio
serviço em /comprovante/<id>.
"""
import base64
import logging
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Optional

import cloudinary.exceptions
import cloudinary.uploader
import requests
from cachetools import TTLCache

from comprovante import ReceiptDocument
from config import Config

logger = logging.getLogger(__name__)

GITHUB_API_URL = "https://api.github.com"


class StorageError(Exception):
    """Upload para o armazenamento externo falhou."""


class PublishError(Exception):
    """Nem o armazenamento externo nem o local conseguiram guardar o comprovante."""


class NotFoundError(Exception):
    """Comprovante inexistente ou expirado no armazenamento local."""


@dataclass(frozen=True)
class ReceiptLocator:
    url: str
    download_url: str
    provider: str

    def to_dict(self):
        return {'url': self.url, 'downloadUrl': self.download_url, 'provider': self.provider}


class BaseStorage:
    name = "base"

    def upload(self, document: ReceiptDocument) -> ReceiptLocator:
        raise NotImplementedError()


class GitHubStorage(BaseStorage):
    """Grava o PDF como arquivo de um repositório via API de conteúdos."""
    name = "github"

    def __init__(self, token, repo, branch="main", path_prefix="comprovantes", session=None, timeout=30):
        self.token = token
        self.repo = repo
        self.branch = branch
        self.path_prefix = path_prefix
        self.session = session or requests.Session()
        self.timeout = timeout

    def upload(self, document: ReceiptDocument) -> ReceiptLocator:
        path = f"{self.path_prefix}/{document.filename}" if self.path_prefix else document.filename
        body = {
            "message": f"Comprovante {document.filename}",
            "content": base64.b64encode(document.content).decode('ascii'),
            "branch": self.branch,
        }
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
        }
        resp = self.session.put(f"{GITHUB_API_URL}/repos/{self.repo}/contents/{path}",
                                json=body, headers=headers, timeout=self.timeout)
        if not resp.ok:
            raise StorageError(f"GitHub respondeu HTTP {resp.status_code}")
        try:
            content = resp.json()["content"]
            return ReceiptLocator(url=content["html_url"], download_url=content["download_url"],
                                  provider=self.name)
        except (ValueError, KeyError, TypeError) as e:
            raise StorageError(f"Resposta inesperada do GitHub: {e}")


class CloudinaryStorage(BaseStorage):
    """Upload de arquivo "raw" (PDF em data URI) pelo SDK oficial do Cloudinary."""
    name = "cloudinary"

    def __init__(self, cloud_name, api_key, api_secret, folder="comprovantes", timeout=30,
                 uploader=cloudinary.uploader.upload):
        self.cloud_name = cloud_name
        self.api_key = api_key
        self.api_secret = api_secret
        self.folder = folder
        self.timeout = timeout
        self.uploader = uploader

    def upload(self, document: ReceiptDocument) -> ReceiptLocator:
        public_id = f"{self.folder}/{document.filename}" if self.folder else document.filename
        data_uri = (f"data:{document.content_type};base64,"
                    f"{base64.b64encode(document.content).decode('ascii')}")
        try:
            result = self.uploader(
                data_uri,
                resource_type="raw",
                public_id=public_id,
                cloud_name=self.cloud_name,
                api_key=self.api_key,
                api_secret=self.api_secret,
                timeout=self.timeout,
            )
        except cloudinary.exceptions.Error as e:
            raise StorageError(f"Cloudinary recusou o upload: {e}")
        try:
            url = result["secure_url"]
        except (KeyError, TypeError) as e:
            raise StorageError(f"Resposta inesperada do Cloudinary: {e}")
        return ReceiptLocator(url=url, download_url=url, provider=self.name)


def get_storage(config: Config, session=None) -> Optional[BaseStorage]:
    """Seleciona o armazenamento externo por STORAGE_PROVIDER. None = só local."""
    provider = (config.storage_provider or '').lower()
    if provider == 'github':
        if config.github_token and config.github_repo:
            return GitHubStorage(config.github_token, config.github_repo, config.github_branch,
                                 config.github_path_prefix, session=session, timeout=config.http_timeout)
        logger.warning("STORAGE_PROVIDER=github sem GITHUB_TOKEN/GITHUB_REPO. Usando armazenamento local.")
    elif provider == 'cloudinary':
        if config.cloudinary_cloud_name and config.cloudinary_api_key and config.cloudinary_api_secret:
            return CloudinaryStorage(config.cloudinary_cloud_name, config.cloudinary_api_key,
                                     config.cloudinary_api_secret, config.cloudinary_folder,
                                     timeout=config.http_timeout)
        logger.warning("STORAGE_PROVIDER=cloudinary sem credenciais completas. Usando armazenamento local.")
    elif provider:
        logger.warning(f"STORAGE_PROVIDER desconhecido: {provider}. Usando armazenamento local.")
    return None


class ReceiptPublisher:
    def __init__(self, config: Config, storage: Optional[BaseStorage] = None, timer=time.monotonic):
        self.config = config
        self.storage = storage
        # Cache limitado: entradas expiram após RECEIPT_CACHE_TTL e as mais antigas saem ao encher
        self._local = TTLCache(maxsize=max(config.receipt_cache_maxsize, 1),
                               ttl=max(config.receipt_cache_ttl, 1), timer=timer)
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Config, session=None):
        return cls(config, storage=get_storage(config, session=session))

    def publish(self, document: ReceiptDocument, base_url: Optional[str] = None) -> ReceiptLocator:
        if self.storage is not None:
            try:
                locator = self.storage.upload(document)
                logger.info(f"Comprovante {document.filename} enviado para {self.storage.name}")
                return locator
            except (StorageError, requests.RequestException) as e:
                logger.warning(f"Falha ao enviar comprovante para {self.storage.name}: {e}. "
                               f"Usando armazenamento local.")
        return self._store_locally(document, base_url)

    def _store_locally(self, document, base_url):
        receipt_id = uuid.uuid4().hex
        try:
            with self._lock:
                self._local[receipt_id] = document
        except Exception as e:
            raise PublishError(f"Falha ao guardar comprovante localmente: {e}")

        base = (self.config.public_base_url or base_url or '').rstrip('/')
        url = f"{base}/comprovante/{receipt_id}"
        return ReceiptLocator(url=url, download_url=f"{url}?download=true", provider="local")

    def get(self, receipt_id: str) -> ReceiptDocument:
        with self._lock:
            document = self._local.get(receipt_id)
        if document is None:
            raise NotFoundError(receipt_id)
        return document

    def local_count(self) -> int:
        with self._lock:
            self._local.expire()
            return len(self._local)

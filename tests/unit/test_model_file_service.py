import asyncio
from types import SimpleNamespace

import pytest
from starlette.requests import Request

from storagekit.api.middleware import UploadMiddleware
from storagekit.core.config import DEFAULT_MAX_FILE_SIZE
from storagekit.core.config import StorageSettings
from storagekit.core.exceptions import ConfigurationMissingError
from storagekit.core.exceptions import FolderTemplateError
from storagekit.core.exceptions import SizeExceededError
from storagekit.core.exceptions import TooManyFilesError
from storagekit.core.exceptions import TypeDisallowedError
from storagekit.core.exceptions import TypeNotAllowedError
from storagekit.core.exceptions import UploadFailedError
from storagekit.models.file_models import ModelFileConfig
from storagekit.models.file_models import define_file_fields
from storagekit.services.model_file_service import ModelFileService
from storagekit.services.model_file_service import create_model_file_service


@pytest.fixture
def product_config():
    return ModelFileConfig(
        file_fields=define_file_fields(
            avatar={"allowed_categories": ["image"], "max_count": 1, "max_size": "500KB"},
            gallery={"allowed_categories": ["image"], "disallowed_types": ["image/gif"], "max_count": 3},
            manual={"allowed_types": ["application/pdf"], "metadata": {"kind": "manual"}},
        ),
        folder_template="{model}/{id}",
    )


@pytest.fixture
def file_service(product_config, storage):
    return ModelFileService("Product", product_config, storage=storage)


# ---------------------------------------------------------------------------
# process_files
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_process_files_returns_url_or_list_per_field(file_service, make_file):
    files = {
        "avatar": [make_file("me.png")],
        "gallery": [make_file("g1.png"), make_file("g2.jpg", "image/jpeg")],
        "manual": make_file("m.pdf", "application/pdf"),
    }

    urls = await file_service.process_files(files, {"id": 42})

    assert urls == {
        "avatar": "https://files.test/product/42/avatar/me.png",
        "gallery": ["https://files.test/product/42/gallery/g1.png", "https://files.test/product/42/gallery/g2.jpg"],
        "manual": ["https://files.test/product/42/manual/m.pdf"],
    }


@pytest.mark.asyncio
async def test_process_files_attaches_model_field_and_context_metadata(file_service, fake_provider, make_file):
    await file_service.process_files({"manual": [make_file("m.pdf", "application/pdf")]}, {"id": 7})

    assert fake_provider.uploaded == [
        {
            "name": "m.pdf",
            "folder": "product/7/manual",
            "metadata": {"model": "Product", "field": "manual", "id": 7, "kind": "manual"},
        }
    ]


@pytest.mark.asyncio
async def test_process_files_reads_request_state(file_service, make_file):
    request = SimpleNamespace(state=SimpleNamespace(uploaded_files={"avatar": [make_file("me.png")]}))

    urls = await file_service.process_files(request, {"id": 1})

    assert urls == {"avatar": "https://files.test/product/1/avatar/me.png"}


@pytest.mark.asyncio
async def test_process_files_reads_starlette_request_state(file_service, make_file):
    request = Request({"type": "http", "method": "POST", "path": "/products/1", "headers": []})
    request.state.uploaded_files = {"avatar": [make_file("me.png")]}

    urls = await file_service.process_files(request, {"id": 1})

    assert urls == {"avatar": "https://files.test/product/1/avatar/me.png"}


@pytest.mark.asyncio
async def test_process_files_starlette_request_without_uploads(file_service, fake_provider):
    request = Request({"type": "http", "method": "POST", "path": "/products/1", "headers": []})

    assert await file_service.process_files(request, {"id": 1}) == {}
    assert fake_provider.uploaded == []


@pytest.mark.asyncio
async def test_process_files_without_files_returns_empty(file_service, fake_provider):
    assert await file_service.process_files({}, {"id": 1}) == {}
    assert await file_service.process_files(SimpleNamespace(), {"id": 1}) == {}
    assert fake_provider.uploaded == []


@pytest.mark.asyncio
async def test_process_files_ignores_unconfigured_fields(file_service, fake_provider, make_file):
    assert await file_service.process_files({"other": [make_file()]}, {"id": 1}) == {}
    assert fake_provider.uploaded == []


@pytest.mark.asyncio
async def test_too_many_files_fails_before_any_upload(file_service, fake_provider, make_file):
    files = {"gallery": [make_file("g.png")], "avatar": [make_file("a.png"), make_file("b.png")]}

    with pytest.raises(TooManyFilesError):
        await file_service.process_files(files, {"id": 1})

    assert fake_provider.uploaded == []


@pytest.mark.asyncio
async def test_invalid_file_in_any_field_fails_before_any_upload(file_service, fake_provider, make_file):
    files = {"avatar": [make_file("a.png")], "gallery": [make_file("anim.gif", "image/gif")]}

    with pytest.raises(TypeDisallowedError):
        await file_service.process_files(files, {"id": 1})

    assert fake_provider.uploaded == []


@pytest.mark.asyncio
async def test_field_type_and_size_rules_are_enforced(file_service, make_file):
    with pytest.raises(TypeNotAllowedError):
        await file_service.process_files({"manual": [make_file("a.png")]}, {"id": 1})
    with pytest.raises(SizeExceededError):
        await file_service.process_files({"avatar": [make_file("a.png", size=600_000)]}, {"id": 1})


@pytest.mark.asyncio
async def test_missing_folder_context_fails(file_service, fake_provider, make_file):
    with pytest.raises(FolderTemplateError):
        await file_service.process_files({"avatar": [make_file()]}, {})
    assert fake_provider.uploaded == []


@pytest.mark.asyncio
async def test_custom_folder_template(storage, make_file):
    config = {"file_fields": {"logo": {"max_count": 1}}, "folder_template": "tenants/{tenant}/{model}"}
    service = ModelFileService("Brand", config, storage=storage)

    urls = await service.process_files({"logo": [make_file("l.png")]}, {"tenant": "acme"})

    assert urls == {"logo": "https://files.test/tenants/acme/brand/logo/l.png"}


@pytest.mark.asyncio
async def test_upload_failure_propagates(file_service, fake_provider, make_file):
    fake_provider.fail_uploads.add("bad.png")
    with pytest.raises(UploadFailedError):
        await file_service.process_files({"gallery": [make_file("ok.png"), make_file("bad.png")]}, {"id": 1})


# ---------------------------------------------------------------------------
# Deletion and cleanup
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cleanup_deletes_only_removed_urls(file_service, fake_provider):
    await file_service.cleanup_replaced_files({"gallery": ["url1", "url2"]}, {"gallery": ["url2", "url3"]})
    assert fake_provider.deleted == ["url1"]


@pytest.mark.asyncio
async def test_cleanup_handles_single_url_fields(file_service, fake_provider):
    await file_service.cleanup_replaced_files({"avatar": "old"}, {"avatar": "new"})
    assert fake_provider.deleted == ["old"]


@pytest.mark.asyncio
async def test_cleanup_skips_fields_without_new_or_old_urls(file_service, fake_provider):
    existing = {"avatar": "old", "gallery": None, "manual": ["m1"]}
    await file_service.cleanup_replaced_files(existing, {"gallery": ["g1"], "manual": []})
    assert fake_provider.deleted == []


@pytest.mark.asyncio
async def test_cleanup_accepts_record_objects(file_service, fake_provider):
    existing = SimpleNamespace(avatar="old", gallery=["a", "b"])
    await file_service.cleanup_replaced_files(existing, {"avatar": "new", "gallery": ["b"]})
    assert sorted(fake_provider.deleted) == ["a", "old"]


@pytest.mark.asyncio
async def test_delete_files_removes_every_configured_url(file_service, fake_provider):
    record = {"avatar": "a", "gallery": ["g1", "g2"], "manual": None, "title": "not a file"}
    await file_service.delete_files(record)
    assert sorted(fake_provider.deleted) == ["a", "g1", "g2"]


@pytest.mark.asyncio
async def test_delete_failures_are_logged_not_raised(file_service, fake_provider, caplog):
    fake_provider.fail_deletes.add("g1")

    await file_service.delete_files({"gallery": ["g1", "g2"], "avatar": "a"})

    assert sorted(fake_provider.deleted) == ["a", "g2"]
    assert "g1" in caplog.text


# ---------------------------------------------------------------------------
# Lazy initialization
# ---------------------------------------------------------------------------


class _FakeStorage:
    def __init__(self, settings, provider):
        self.settings = settings
        self.provider = provider

    async def delete(self, url):
        await self.provider.delete(url)


@pytest.mark.asyncio
async def test_storage_initialized_once_for_concurrent_callers(monkeypatch, product_config, storage_settings, fake_provider):
    import storagekit.services.model_file_service as mfs

    calls = []

    def fake_load_settings(project_root):
        calls.append(project_root)
        return storage_settings

    monkeypatch.setattr(mfs, "load_settings", fake_load_settings)
    monkeypatch.setattr(mfs, "StorageService", lambda settings: _FakeStorage(settings, fake_provider))

    service = ModelFileService("Product", product_config, project_root="/srv/app")
    await asyncio.gather(service.delete_files({"avatar": "a"}), service.delete_files({"avatar": "b"}))
    await service.delete_files({"avatar": "c"})

    assert len(calls) == 1
    assert sorted(fake_provider.deleted) == ["a", "b", "c"]
    assert service.storage_settings is storage_settings


@pytest.mark.asyncio
async def test_initialization_failure_propagates(product_config):
    settings = StorageSettings(_env_file=None, provider="s3", aws_s3_bucket=None)
    service = ModelFileService("Product", product_config, settings=settings)

    with pytest.raises(ConfigurationMissingError):
        await service.delete_files({"avatar": "a"})


# ---------------------------------------------------------------------------
# Upload middleware configuration
# ---------------------------------------------------------------------------


def test_middleware_config_from_fields(file_service):
    config = file_service.get_upload_middleware_config()

    assert [(f.name, f.max_count) for f in config.fields] == [("avatar", 1), ("gallery", 3), ("manual", None)]
    assert config.max_file_size == 500_000
    assert config.allowed_categories == ["image"]
    assert config.allowed_types == ["application/pdf"]
    assert config.max_files == 20


def test_middleware_config_size_fallbacks(storage_settings):
    fields = define_file_fields(doc={"max_count": 2})

    with_model_limit = ModelFileService("Doc", {"file_fields": fields, "max_file_size": "2MB"})
    assert with_model_limit.get_upload_middleware_config().max_file_size == 2_000_000

    with_settings = ModelFileService("Doc", {"file_fields": fields}, settings=storage_settings)
    assert with_settings.get_upload_middleware_config().max_file_size == 1_000_000

    bare = ModelFileService("Doc", {"file_fields": fields})
    assert bare.get_upload_middleware_config().max_file_size == DEFAULT_MAX_FILE_SIZE


def test_middleware_config_uses_configured_max_files(product_config, storage_settings):
    settings = storage_settings.model_copy(update={"max_files": 50})
    service = ModelFileService("Product", product_config, settings=settings)

    assert service.get_upload_middleware_config().max_files == 50


def test_middleware_config_skips_type_union_when_a_field_accepts_anything(storage_settings):
    fields = define_file_fields(cover={"allowed_categories": ["image"]}, attachment={"max_count": 2})
    config = ModelFileService("Post", {"file_fields": fields}, settings=storage_settings).get_upload_middleware_config()

    assert config.allowed_types == []
    assert config.allowed_categories == []


def test_no_file_fields_means_no_middleware():
    service = create_model_file_service("Tag")
    assert service.get_upload_middleware_config() is None
    assert service.get_upload_middleware() is None


def test_get_upload_middleware(file_service):
    middleware = file_service.get_upload_middleware()
    assert isinstance(middleware, UploadMiddleware)
    assert middleware.field_limits == {"avatar": 1, "gallery": 3, "manual": None}

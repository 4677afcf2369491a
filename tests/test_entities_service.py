"""Tests for EntityLifecycleService CRUD + list orchestration."""

import dataclasses

import pytest

from typeforge.core.types import DISCRIMINATOR_FIELD, SHARED_COLLECTION
from typeforge.errors import (
    EntityNotFoundError,
    UniqueViolationError,
    UnknownTypeError,
    UnpublishedTypeError,
    ValidationFailedError,
)
from typeforge.hooks import HookPatch, HookPhase, HookStep

SHARED_TAG = {
    "datatype": "tag",
    "status": "published",
    "storage": "single",
    "fields": [{"key": "name", "type": "string", "required": True, "unique": True}],
}

async def seed_posts(rt, titles):
    author = await rt.entities.create("author", {"name": "Ann"})
    posts = []
    for title in titles:
        posts.append(await rt.entities.create("post", {"title": title, "authorId": author["id"]}))
    return author, posts

# =============================================================================
# Create
# =============================================================================

class TestCreate:
    @pytest.mark.asyncio
    async def test_returns_stored_entity_with_system_fields(self, blog):
        author = await blog.entities.create("Author", {"name": "Ann", "extra": "dropped"})
        assert len(author["id"]) == 24
        assert author["name"] == "Ann"
        assert "extra" not in author
        assert author["createdAt"] == author["updatedAt"]

    @pytest.mark.asyncio
    async def test_validation_failure(self, blog):
        with pytest.raises(ValidationFailedError) as exc_info:
            await blog.entities.create("post", {"authorId": "nope"})
        assert exc_info.value.errors == {"title": "required", "authorId": "expected_id"}

    @pytest.mark.asyncio
    async def test_unknown_and_unpublished_types(self, runtime_factory):
        rt = runtime_factory({"datatype": "sketch", "fields": []})
        with pytest.raises(UnknownTypeError):
            await rt.entities.create("ghost", {})
        with pytest.raises(UnpublishedTypeError):
            await rt.entities.create("sketch", {})

    @pytest.mark.asyncio
    async def test_single_storage_uses_shared_collection(self, blog):
        tag = await blog.entities.create("tag", {"name": "python"})
        stored = blog.storage.collections[SHARED_COLLECTION][tag["id"]]
        assert stored[DISCRIMINATOR_FIELD] == "tag"
        assert DISCRIMINATOR_FIELD not in tag

    @pytest.mark.asyncio
    async def test_per_type_storage_uses_own_collection(self, blog):
        author = await blog.entities.create("author", {"name": "Ann"})
        assert author["id"] in blog.storage.collections["data_author"]

class TestUnique:
    @pytest.mark.asyncio
    async def test_precheck_rejects_duplicate(self, blog):
        await blog.entities.create("author", {"name": "A", "email": "a@x.io"})
        with pytest.raises(UniqueViolationError) as exc_info:
            await blog.entities.create("author", {"name": "B", "email": "a@x.io"})
        assert exc_info.value.field_key == "email"
        assert exc_info.value.value == "a@x.io"

    @pytest.mark.asyncio
    async def test_storage_index_violation_remapped(self, blog, monkeypatch):
        await blog.registry.materialize_published()

        async def skip_precheck(*args, **kwargs):
            return None

        monkeypatch.setattr(blog.entities, "_ensure_unique", skip_precheck)
        await blog.entities.create("author", {"name": "A", "email": "a@x.io"})
        with pytest.raises(UniqueViolationError) as exc_info:
            await blog.entities.create("author", {"name": "B", "email": "a@x.io"})
        assert exc_info.value.type_key == "author"
        assert exc_info.value.field_key == "email"

    @pytest.mark.asyncio
    async def test_absent_unique_values_do_not_collide(self, blog):
        await blog.registry.materialize_published()
        await blog.entities.create("author", {"name": "A"})
        await blog.entities.create("author", {"name": "B"})
        assert (await blog.entities.list("author"))["total"] == 2

    @pytest.mark.asyncio
    async def test_update_to_own_value_allowed(self, blog):
        author = await blog.entities.create("author", {"name": "A", "email": "a@x.io"})
        updated = await blog.entities.update("author", author["id"], {"email": "a@x.io"})
        assert updated["email"] == "a@x.io"

    @pytest.mark.asyncio
    async def test_update_to_taken_value_rejected(self, blog):
        await blog.entities.create("author", {"name": "A", "email": "a@x.io"})
        other = await blog.entities.create("author", {"name": "B", "email": "b@x.io"})
        with pytest.raises(UniqueViolationError):
            await blog.entities.update("author", other["id"], {"email": "a@x.io"})

    @pytest.mark.asyncio
    async def test_shared_collection_scopes_unique_per_type(self, runtime_factory):
        label = {**SHARED_TAG, "datatype": "label"}
        rt = runtime_factory(SHARED_TAG, label)
        await rt.registry.materialize_published()
        await rt.entities.create("tag", {"name": "same"})
        await rt.entities.create("label", {"name": "same"})
        with pytest.raises(UniqueViolationError):
            await rt.entities.create("tag", {"name": "same"})

# =============================================================================
# Get / update / delete
# =============================================================================

class TestGet:
    @pytest.mark.asyncio
    async def test_round_trip(self, blog):
        created = await blog.entities.create("author", {"name": "Ann"})
        assert await blog.entities.get("author", created["id"]) == created

    @pytest.mark.asyncio
    async def test_uppercase_id_accepted(self, blog):
        created = await blog.entities.create("author", {"name": "Ann"})
        fetched = await blog.entities.get("author", created["id"].upper())
        assert fetched["id"] == created["id"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("bad_id", ["nope", "0" * 23, "z" * 24, "0" * 24 + "\n"])
    async def test_invalid_id_is_not_found(self, blog, bad_id):
        with pytest.raises(EntityNotFoundError):
            await blog.entities.get("author", bad_id)

    @pytest.mark.asyncio
    async def test_missing_entity(self, blog):
        with pytest.raises(EntityNotFoundError):
            await blog.entities.get("author", "0" * 24)

    @pytest.mark.asyncio
    async def test_type_scoped_in_shared_collection(self, runtime_factory):
        label = {**SHARED_TAG, "datatype": "label"}
        rt = runtime_factory(SHARED_TAG, label)
        tag = await rt.entities.create("tag", {"name": "x"})
        with pytest.raises(EntityNotFoundError):
            await rt.entities.get("label", tag["id"])

class TestUpdate:
    @pytest.mark.asyncio
    async def test_partial_update_skips_required(self, blog):
        author, (post,) = await seed_posts(blog, ["Hello"])
        updated = await blog.entities.update("post", post["id"], {"slug": "hello"})
        assert updated["title"] == "Hello"
        assert updated["slug"] == "hello"
        assert updated["authorId"] == author["id"]
        assert updated["createdAt"] == post["createdAt"]

    @pytest.mark.asyncio
    async def test_update_missing_entity(self, blog):
        with pytest.raises(EntityNotFoundError):
            await blog.entities.update("author", "0" * 24, {"name": "x"})

    @pytest.mark.asyncio
    async def test_invalid_patch_reported_before_lookup(self, blog):
        with pytest.raises(ValidationFailedError) as exc_info:
            await blog.entities.update("author", "0" * 24, {"name": 5})
        assert exc_info.value.errors == {"name": "expected_string"}

    @pytest.mark.asyncio
    async def test_update_validates_types(self, blog):
        author = await blog.entities.create("author", {"name": "Ann"})
        with pytest.raises(ValidationFailedError) as exc_info:
            await blog.entities.update("author", author["id"], {"name": 5})
        assert exc_info.value.errors == {"name": "expected_string"}

class TestDelete:
    @pytest.mark.asyncio
    async def test_delete_result(self, blog):
        author = await blog.entities.create("author", {"name": "Ann"})
        result = await blog.entities.delete("author", author["id"])
        assert result == {"deleted": True, "id": author["id"], "cascaded": []}
        with pytest.raises(EntityNotFoundError):
            await blog.entities.get("author", author["id"])

    @pytest.mark.asyncio
    async def test_delete_missing(self, blog):
        with pytest.raises(EntityNotFoundError):
            await blog.entities.delete("author", "0" * 24)

# =============================================================================
# List
# =============================================================================

class TestList:
    @pytest.mark.asyncio
    async def test_paging_defaults(self, blog):
        await seed_posts(blog, [f"p{i}" for i in range(3)])
        result = await blog.entities.list("post")
        assert result["page"] == 1
        assert result["pageSize"] == 20
        assert result["total"] == 3
        assert len(result["items"]) == 3

    @pytest.mark.asyncio
    async def test_page_window_and_cap(self, blog):
        await seed_posts(blog, [f"p{i}" for i in range(5)])
        result = await blog.entities.list("post", {"page": "2", "pageSize": "2", "sortBy": "title"})
        assert [p["title"] for p in result["items"]] == ["p2", "p3"]
        assert result["total"] == 5

        capped = await blog.entities.list("post", {"pageSize": 1000})
        assert capped["pageSize"] == 100

    @pytest.mark.asyncio
    async def test_invalid_paging_falls_back(self, blog):
        result = await blog.entities.list("post", {"page": "0", "pageSize": "abc"})
        assert result["page"] == 1
        assert result["pageSize"] == 20

    @pytest.mark.asyncio
    async def test_sort_desc(self, blog):
        await seed_posts(blog, ["b", "a", "c"])
        result = await blog.entities.list("post", {"sortBy": "title", "sortDir": "desc"})
        assert [p["title"] for p in result["items"]] == ["c", "b", "a"]

    @pytest.mark.asyncio
    async def test_unknown_sort_field(self, blog):
        with pytest.raises(ValidationFailedError) as exc_info:
            await blog.entities.list("post", {"sortBy": "nope"})
        assert exc_info.value.errors == {"sortBy": "unknown_field"}

    @pytest.mark.asyncio
    async def test_equality_and_in_filters(self, blog):
        await seed_posts(blog, ["a", "b", "c"])
        single = await blog.entities.list("post", {"title": "b"})
        assert [p["title"] for p in single["items"]] == ["b"]

        many = await blog.entities.list("post", {"title": ["a", "c"], "sortBy": "title"})
        assert [p["title"] for p in many["items"]] == ["a", "c"]

    @pytest.mark.asyncio
    async def test_undeclared_filter_keys_ignored(self, blog):
        await seed_posts(blog, ["a"])
        result = await blog.entities.list("post", {"nope": "x"})
        assert result["total"] == 1

    @pytest.mark.asyncio
    async def test_filter_values_coerced(self, runtime_factory):
        rt = runtime_factory(
            {
                "datatype": "item",
                "status": "published",
                "fields": [{"key": "qty", "type": "number"}, {"key": "live", "type": "boolean"}],
            }
        )
        await rt.entities.create("item", {"qty": 3, "live": True})
        await rt.entities.create("item", {"qty": 4, "live": False})
        assert (await rt.entities.list("item", {"qty": "3"}))["total"] == 1
        assert (await rt.entities.list("item", {"live": "false"}))["total"] == 1

# =============================================================================
# Hook integration
# =============================================================================

class TestLifecycleHooks:
    @pytest.mark.asyncio
    async def test_before_create_payload_changes_are_persisted(self, blog):
        def stamp(ctx):
            ctx.payload["email"] = "stamped@x.io"
            ctx.payload["undeclared"] = True
            return ctx

        blog.hook_registry.register("stamp", stamp)
        blog.hook_store.apply_patch(HookPatch("author", {HookPhase.BEFORE_CREATE: (HookStep("stamp"),)}))

        author = await blog.entities.create("author", {"name": "Ann"})
        assert author["email"] == "stamped@x.io"
        assert "undeclared" not in author

    @pytest.mark.asyncio
    async def test_after_create_sees_result_and_id(self, blog):
        seen = {}

        def capture(ctx):
            seen["id"] = ctx.meta.extra.get("id")
            seen["result"] = ctx.result
            return dataclasses.replace(ctx, result={**ctx.result, "decorated": True})

        blog.hook_registry.register("capture", capture)
        blog.hook_store.apply_patch(HookPatch("author", {HookPhase.AFTER_CREATE: (HookStep("capture"),)}))

        author = await blog.entities.create("author", {"name": "Ann"})
        assert seen["id"] == author["id"]
        assert seen["result"]["name"] == "Ann"
        assert author["decorated"] is True

    @pytest.mark.asyncio
    async def test_before_update_gets_entity_id(self, blog):
        seen = []
        blog.hook_registry.register("spy", lambda ctx: seen.append(ctx.meta.extra["id"]))
        blog.hook_store.apply_patch(HookPatch("author", {HookPhase.BEFORE_UPDATE: (HookStep("spy"),)}))

        author = await blog.entities.create("author", {"name": "Ann"})
        await blog.entities.update("author", author["id"], {"name": "Bea"})
        assert seen == [author["id"]]

    @pytest.mark.asyncio
    async def test_phases_run_in_lifecycle_order(self, blog):
        order = []
        for phase in HookPhase:
            name = f"log_{phase.value}"
            blog.hook_registry.register(name, lambda ctx, p=phase.value: order.append(p))
            blog.hook_store.apply_patch(HookPatch("author", {phase: (HookStep(name),)}))

        author = await blog.entities.create("author", {"name": "Ann"})
        await blog.entities.get("author", author["id"])
        await blog.entities.update("author", author["id"], {"name": "Bea"})
        await blog.entities.list("author")
        await blog.entities.delete("author", author["id"])

        assert order == [
            "beforeCreate",
            "afterCreate",
            "beforeGet",
            "afterGet",
            "beforeUpdate",
            "afterUpdate",
            "beforeList",
            "afterList",
            "beforeDelete",
            "afterDelete",
        ]

    @pytest.mark.asyncio
    async def test_request_id_reaches_every_step(self, blog):
        seen = []
        blog.hook_registry.register("spy", lambda ctx: seen.append((ctx.meta.phase.value, ctx.meta.request_id)))
        blog.hook_store.apply_patch(
            HookPatch("author", {HookPhase.BEFORE_CREATE: (HookStep("spy"),), HookPhase.AFTER_GET: (HookStep("spy"),)})
        )

        author = await blog.entities.create("author", {"name": "Ann"}, request_id="req-1")
        await blog.entities.get("author", author["id"], request_id="req-2")
        await blog.entities.get("author", author["id"])
        assert seen == [("beforeCreate", "req-1"), ("afterGet", "req-2"), ("afterGet", None)]

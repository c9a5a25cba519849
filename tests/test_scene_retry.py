"""单场景重新生成测试"""

import pytest
from sqlalchemy import select

from conftest import FakeAnalyzer, FakeSynthesizer, seed_user, unique_user
from diary_comic.exceptions import PermissionDeniedError, ResourceNotFoundError, SceneRenderFailure
from diary_comic.models.comic import ComicScene
from diary_comic.schemas.comic import GenerateComicRequest
from diary_comic.services.character_compositor import CharacterCompositor
from diary_comic.services.comic_generation import ComicGenerationWorkflow, SceneRetryService
from diary_comic.services.credit_service import CreditLedgerService
from diary_comic.services.image_generation import ImageStorage
from diary_comic.services.prompt_processor import PromptProcessor


async def _generate(session, user_id, descriptions, comic_format="four", names=("Alice", "Bob")):
    characters = await seed_user(session, user_id, balance=100, names=list(names))
    request = GenerateComicRequest(
        story="周末", character_ids=[c.id for c in characters], format=comic_format
    )
    workflow = ComicGenerationWorkflow(
        session=session,
        request=request,
        user_id=user_id,
        ledger=CreditLedgerService(session),
        analyzer=FakeAnalyzer(descriptions),
        compositor=CharacterCompositor(),
        prompt_processor=PromptProcessor(),
        synthesizer=FakeSynthesizer(),
        storage=ImageStorage(public_base="/api/images"),
        render_concurrency=1,
    )
    return await workflow.execute()


def _retry_service(session, synthesizer):
    return SceneRetryService(
        session,
        compositor=CharacterCompositor(),
        prompt_processor=PromptProcessor(),
        synthesizer=synthesizer,
        storage=ImageStorage(public_base="/api/images"),
    )


async def _scenes(session_factory, comic_id):
    async with session_factory() as check:
        result = await check.execute(
            select(ComicScene).where(ComicScene.comic_id == comic_id).order_by(ComicScene.scene_order)
        )
        return result.scalars().all()


async def test_retry_regenerates_one_scene(session, session_factory, images_root, four_scene_descriptions):
    user_id = unique_user()
    result = await _generate(session, user_id, four_scene_descriptions)
    before = await _scenes(session_factory, result.comic_id)
    target = before[1]
    synthesizer = FakeSynthesizer()

    updated = await _retry_service(session, synthesizer).retry_scene(
        target.id, "<Bob> hands <Alice> a balloon", user_id
    )

    assert updated.retry_count == 1
    assert updated.status == "completed"
    assert updated.scenario_description == "<Bob> hands <Alice> a balloon"
    assert f"/users/{user_id}/comics/{target.id}_retry_" in updated.image_url
    assert updated.image_url != target.image_url
    # 角色顺序沿用生成请求中的顺序（Alice 在左）
    assert "right character hands left character a balloon" in synthesizer.calls[0]["prompt"]

    after = await _scenes(session_factory, result.comic_id)
    for old, new in zip(before, after):
        if old.id != target.id:
            assert (new.image_url, new.retry_count, new.status) == (old.image_url, old.retry_count, old.status)

    async with session_factory() as check:
        ledger = CreditLedgerService(check)
        assert await ledger.get_balance(user_id) == 60
        assert len(await ledger.list_transactions(user_id)) == 1


async def test_retry_without_description_keeps_original(session, images_root, four_scene_descriptions):
    user_id = unique_user()
    result = await _generate(session, user_id, four_scene_descriptions)
    target = result.scenes[0]
    synthesizer = FakeSynthesizer()

    updated = await _retry_service(session, synthesizer).retry_scene(target.id, None, user_id)

    assert updated.scenario_description == four_scene_descriptions[0]
    assert "character walks into the park" in synthesizer.calls[0]["prompt"]


async def test_failed_retry_counts_once(session, session_factory, images_root, four_scene_descriptions):
    user_id = unique_user()
    result = await _generate(session, user_id, four_scene_descriptions)
    target = result.scenes[2]

    with pytest.raises(SceneRenderFailure):
        await _retry_service(session, FakeSynthesizer(fail_on=1)).retry_scene(target.id, None, user_id)

    scenes = await _scenes(session_factory, result.comic_id)
    assert scenes[2].status == "failed"
    assert scenes[2].retry_count == 1
    assert scenes[2].image_url == target.image_url


async def test_retry_checks_ownership(session, images_root, four_scene_descriptions):
    user_id = unique_user()
    result = await _generate(session, user_id, four_scene_descriptions)
    service = _retry_service(session, FakeSynthesizer())

    with pytest.raises(PermissionDeniedError):
        await service.retry_scene(result.scenes[0].id, None, unique_user())
    with pytest.raises(ResourceNotFoundError):
        await service.retry_scene("missing-scene", None, user_id)


async def test_new_description_resolves_comic_characters(session, images_root, four_scene_descriptions):
    user_id = unique_user()
    result = await _generate(session, user_id, four_scene_descriptions)
    target = result.scenes[0]
    alice_avatar = target.characters[0].avatar_url
    synthesizer = FakeSynthesizer()

    updated = await _retry_service(session, synthesizer).retry_scene(
        target.id, "<Bob> and <Alice> walk together", user_id
    )

    call = synthesizer.calls[0]
    assert "right character and left character walk together" in call["prompt"]
    assert "Bob" not in call["prompt"]
    assert call["reference_image"] != alice_avatar
    assert call["reference_image"].startswith("data:image/png;base64,")
    assert [c["name"] for c in updated.characters] == ["Alice", "Bob"]


async def test_name_outside_comic_is_not_resolved(session, images_root, four_scene_descriptions):
    user_id = unique_user()
    result = await _generate(session, user_id, four_scene_descriptions)
    await seed_user(session, user_id, balance=None, names=["Carol"])
    synthesizer = FakeSynthesizer()

    updated = await _retry_service(session, synthesizer).retry_scene(
        result.scenes[1].id, "<Carol> waves from afar", user_id
    )

    assert "Carol waves from afar" in synthesizer.calls[0]["prompt"]
    assert synthesizer.calls[0]["reference_image"] is None
    assert updated.characters == []


async def test_poster_retry_keeps_concept_fields(session, images_root):
    user_id = unique_user()
    result = await _generate(session, user_id, ["<Alice> under fireworks"], comic_format="poster", names=["Alice"])
    synthesizer = FakeSynthesizer()

    await _retry_service(session, synthesizer).retry_scene(result.scenes[0].id, None, user_id)

    prompt = synthesizer.calls[0]["prompt"]
    assert "mood: joyful" in prompt
    assert "visual theme: sunset" in prompt
    assert "composition: centered" in prompt


async def test_five_page_retry_keeps_visual_elements(session, images_root):
    user_id = unique_user()
    pages = [f"<Alice> page {n}" for n in range(1, 6)]
    result = await _generate(session, user_id, pages, comic_format="five-page", names=["Alice"])
    synthesizer = FakeSynthesizer()

    await _retry_service(session, synthesizer).retry_scene(result.scenes[2].id, "<Alice> reads a map", user_id)

    prompt = synthesizer.calls[0]["prompt"]
    assert "character reads a map, lanterns 3" in prompt

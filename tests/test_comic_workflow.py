"""漫画生成工作流测试"""

import asyncio

import pytest
from sqlalchemy import func, select

from conftest import FakeAnalyzer, FakeSynthesizer, seed_user, unique_user
from diary_comic.exceptions import (
    AnalysisFormatError,
    CompositingFailure,
    DeductionFailure,
    InsufficientCreditsError,
    InvalidParameterError,
    SceneRenderFailure,
    UnauthorizedCharacterError,
)
from diary_comic.models.comic import Comic, ComicScene
from diary_comic.models.credit import CreditTransaction
from diary_comic.schemas.comic import GenerateComicRequest
from diary_comic.services.character_compositor import CharacterCompositor
from diary_comic.services.comic_generation import (
    CallbackProgressSink,
    ComicGenerationWorkflow,
    QueueProgressSink,
)
from diary_comic.services.credit_service import CreditLedgerService
from diary_comic.services.image_generation import ImageStorage
from diary_comic.services.prompt_processor import PromptProcessor


def _workflow(session, request, user_id, analyzer, synthesizer, sink=None, render_concurrency=1):
    return ComicGenerationWorkflow(
        session=session,
        request=request,
        user_id=user_id,
        ledger=CreditLedgerService(session),
        analyzer=analyzer,
        compositor=CharacterCompositor(),
        prompt_processor=PromptProcessor(),
        synthesizer=synthesizer,
        storage=ImageStorage(public_base="/api/images"),
        sink=sink,
        render_concurrency=render_concurrency,
    )


async def _count(session, model, *criteria) -> int:
    result = await session.execute(select(func.count()).select_from(model).where(*criteria))
    return result.scalar()


async def test_four_panel_comic_end_to_end(session, session_factory, images_root, four_scene_descriptions):
    user_id = unique_user()
    alice, bob = await seed_user(session, user_id, balance=100, names=["Alice", "Bob"])
    request = GenerateComicRequest(
        story="今天和 Bob 去公园吃冰淇淋。",
        character_ids=[alice.id, bob.id],
        style="cute",
        format="comic",
    )
    events = []
    synthesizer = FakeSynthesizer()
    workflow = _workflow(
        session, request, user_id, FakeAnalyzer(four_scene_descriptions), synthesizer,
        sink=CallbackProgressSink(events.append),
    )

    result = await workflow.execute()

    assert result.status == "completed"
    assert result.title == "公园的一天"
    assert [s.scene_order for s in result.scenes] == [1, 2, 3, 4]
    assert all(s.status == "completed" for s in result.scenes)
    for scene in result.scenes:
        assert scene.image_url == f"/api/images/users/{user_id}/comics/{scene.id}.png"
        assert (images_root / "users" / user_id / "comics" / f"{scene.id}.png").exists()

    # 场景角色按请求顺序保存快照
    assert [c.name for c in result.scenes[0].characters] == ["Alice"]
    assert [c.name for c in result.scenes[1].characters] == ["Alice", "Bob"]
    assert result.scenes[3].characters == []

    # 提示词中的角色名被替换为位置标签
    prompts = [call["prompt"] for call in synthesizer.calls]
    assert prompts[1].startswith("cute, kawaii, adorable style, left character and right character")
    assert "<" not in "".join(prompts)
    assert synthesizer.calls[0]["reference_image"] == alice.avatar_url
    assert synthesizer.calls[1]["reference_image"].startswith("data:image/png;base64,")
    assert synthesizer.calls[3]["reference_image"] is None

    async with session_factory() as check:
        ledger = CreditLedgerService(check)
        assert await ledger.get_balance(user_id) == 60
        transactions = await ledger.list_transactions(user_id)
        assert len(transactions) == 1
        assert transactions[0].amount == -40
        assert transactions[0].related_entity_id == result.comic_id
        comic = await check.get(Comic, result.comic_id)
        assert comic.layout_mode == "grid-2x2"
        assert comic.scene_ids == [s.id for s in result.scenes]

    progress = [e.progress for e in events]
    assert progress == sorted(progress)
    assert progress[0] == 2
    assert events[-1].event_type == "complete"
    assert events[-1].progress == 100
    assert events[-1].result["comic_id"] == result.comic_id
    assert {e.current_scene for e in events if e.current_scene} == {1, 2, 3, 4}


async def test_zero_balance_fails_before_writing(session, images_root, four_scene_descriptions):
    user_id = unique_user()
    alice, = await seed_user(session, user_id, balance=None, names=["Alice"])
    analyzer = FakeAnalyzer(four_scene_descriptions)
    synthesizer = FakeSynthesizer()
    request = GenerateComicRequest(story="今天很开心", character_ids=[alice.id], format="four")

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await _workflow(session, request, user_id, analyzer, synthesizer).execute()

    assert exc_info.value.status_code == 402
    assert analyzer.calls == 0
    assert synthesizer.calls == []
    assert await _count(session, Comic, Comic.user_id == user_id) == 0
    assert await _count(session, CreditTransaction, CreditTransaction.user_id == user_id) == 0


async def test_foreign_character_rejected(session, images_root, four_scene_descriptions):
    owner = unique_user()
    intruder = unique_user()
    alice, = await seed_user(session, owner, balance=100, names=["Alice"])
    await seed_user(session, intruder, balance=100)
    request = GenerateComicRequest(story="借用别人的角色", character_ids=[alice.id], format="four")
    analyzer = FakeAnalyzer(four_scene_descriptions)

    with pytest.raises(UnauthorizedCharacterError):
        await _workflow(session, request, intruder, analyzer, FakeSynthesizer()).execute()

    assert analyzer.calls == 0
    assert await _count(session, Comic, Comic.user_id == intruder) == 0


async def test_failed_scene_fails_comic_without_charging(
    session, session_factory, images_root, four_scene_descriptions
):
    user_id = unique_user()
    alice, bob = await seed_user(session, user_id, balance=100, names=["Alice", "Bob"])
    request = GenerateComicRequest(story="下雨天", character_ids=[alice.id, bob.id], format="four")
    synthesizer = FakeSynthesizer(fail_on=3)
    workflow = _workflow(session, request, user_id, FakeAnalyzer(four_scene_descriptions), synthesizer)

    with pytest.raises(SceneRenderFailure) as exc_info:
        await workflow.execute()

    assert exc_info.value.scene_order == 3
    assert len(synthesizer.calls) == 3
    async with session_factory() as check:
        comic = await check.get(Comic, workflow.comic_id)
        assert comic.status == "failed"
        assert comic.error_message
        scenes = (await check.execute(
            select(ComicScene).where(ComicScene.comic_id == workflow.comic_id).order_by(ComicScene.scene_order)
        )).scalars().all()
        assert [s.status for s in scenes] == ["completed", "completed", "failed", "pending"]
        assert scenes[2].retry_count == 1
        ledger = CreditLedgerService(check)
        assert await ledger.get_balance(user_id) == 100
        assert await ledger.list_transactions(user_id) == []


async def test_poster_uses_poster_storage_and_cost(session, session_factory, images_root):
    user_id = unique_user()
    alice, = await seed_user(session, user_id, balance=20, names=["Alice"])
    request = GenerateComicRequest(story="夏日祭", character_ids=[alice.id], style="anime", format="poster")
    synthesizer = FakeSynthesizer()
    analyzer = FakeAnalyzer(["<Alice> under fireworks"], title="Summer Glow")

    result = await _workflow(session, request, user_id, analyzer, synthesizer).execute()

    assert len(result.scenes) == 1
    assert f"/users/{user_id}/posters/" in result.scenes[0].image_url
    prompt = synthesizer.calls[0]["prompt"]
    assert prompt.startswith("character under fireworks, epic anime poster style")
    assert "visual theme: sunset" in prompt
    async with session_factory() as check:
        assert await CreditLedgerService(check).get_balance(user_id) == 0


async def test_parallel_rendering_completes_all_scenes(session, images_root, four_scene_descriptions):
    user_id = unique_user()
    alice, bob = await seed_user(session, user_id, balance=40, names=["Alice", "Bob"])
    request = GenerateComicRequest(story="并行", character_ids=[alice.id, bob.id], format="four")
    sink = QueueProgressSink(maxsize=256)
    workflow = _workflow(
        session, request, user_id, FakeAnalyzer(four_scene_descriptions), FakeSynthesizer(),
        sink=sink, render_concurrency=3,
    )

    result = await workflow.execute()

    assert [s.status for s in result.scenes] == ["completed"] * 4
    events = sink.drain()
    assert events[-1].event_type == "complete"
    finished = {e.current_scene for e in events if e.scene_progress == 100}
    assert finished == {1, 2, 3, 4}


async def test_streaming_yields_the_same_events(session, images_root, four_scene_descriptions):
    user_id = unique_user()
    alice, = await seed_user(session, user_id, balance=40, names=["Alice"])
    request = GenerateComicRequest(story="流式", character_ids=[alice.id], format="four")
    workflow = _workflow(session, request, user_id, FakeAnalyzer(four_scene_descriptions), FakeSynthesizer())

    events = [event async for event in workflow.execute_with_progress()]

    assert events[-1].event_type == "complete"
    assert workflow.final_result.comic_id == events[-1].result["comic_id"]
    assert any(e.scene_progress == 50 for e in events)


async def _scenes(session_factory, comic_id):
    async with session_factory() as check:
        result = await check.execute(
            select(ComicScene).where(ComicScene.comic_id == comic_id).order_by(ComicScene.scene_order)
        )
        return result.scalars().all()


async def test_unsafe_user_id_rejected_before_paid_calls(session, images_root, four_scene_descriptions):
    user_id = "alice.smith"
    alice, = await seed_user(session, user_id, balance=100, names=["Alice"])
    analyzer = FakeAnalyzer(four_scene_descriptions)
    synthesizer = FakeSynthesizer()
    request = GenerateComicRequest(story="点号用户", character_ids=[alice.id], format="four")

    with pytest.raises(InvalidParameterError) as exc_info:
        await _workflow(session, request, user_id, analyzer, synthesizer).execute()

    assert exc_info.value.status_code == 400
    assert analyzer.calls == 0
    assert synthesizer.calls == []
    assert await _count(session, Comic, Comic.user_id == user_id) == 0


class _BrokenAnalyzer(FakeAnalyzer):
    async def analyze(self, story_text, characters, comic_format, style=None):
        self.calls += 1
        raise AnalysisFormatError("场景数量不符", expected=4, actual=2)


async def test_analysis_error_creates_no_rows(session, images_root, four_scene_descriptions):
    user_id = unique_user()
    alice, = await seed_user(session, user_id, balance=100, names=["Alice"])
    synthesizer = FakeSynthesizer()
    request = GenerateComicRequest(story="分析失败", character_ids=[alice.id], format="four")
    workflow = _workflow(session, request, user_id, _BrokenAnalyzer(four_scene_descriptions), synthesizer)

    with pytest.raises(AnalysisFormatError):
        await workflow.execute()

    assert workflow.comic_id is None
    assert synthesizer.calls == []
    assert await _count(session, Comic, Comic.user_id == user_id) == 0
    assert await _count(session, ComicScene) == 0
    assert await CreditLedgerService(session).get_balance(user_id) == 100


async def test_compositing_failure_fails_scene_and_comic(
    session, session_factory, images_root, four_scene_descriptions
):
    user_id = unique_user()
    alice, bob = await seed_user(session, user_id, balance=100, names=["Alice", "Bob"])
    bob.avatar_url = "data:image/png;base64,bm90IGFuIGltYWdl"
    await session.commit()
    request = GenerateComicRequest(story="坏头像", character_ids=[alice.id, bob.id], format="four")
    synthesizer = FakeSynthesizer()
    workflow = _workflow(session, request, user_id, FakeAnalyzer(four_scene_descriptions), synthesizer)

    with pytest.raises(CompositingFailure):
        await workflow.execute()

    # 场景 1 只有 Alice，头像直接透传；场景 2 需要拼接 Bob 的坏头像
    assert len(synthesizer.calls) == 1
    scenes = await _scenes(session_factory, workflow.comic_id)
    assert [s.status for s in scenes] == ["completed", "failed", "pending", "pending"]
    assert scenes[1].retry_count == 1
    async with session_factory() as check:
        comic = await check.get(Comic, workflow.comic_id)
        assert comic.status == "failed"
        ledger = CreditLedgerService(check)
        assert await ledger.get_balance(user_id) == 100
        assert await ledger.list_transactions(user_id) == []


class _FailingLedger(CreditLedgerService):
    async def deduct(self, user_id, amount, description, related_entity=None):
        raise DeductionFailure(user_id, amount, "写库失败")


async def test_deduction_failure_keeps_comic_completed(
    session, session_factory, images_root, four_scene_descriptions
):
    user_id = unique_user()
    alice, = await seed_user(session, user_id, balance=40, names=["Alice"])
    request = GenerateComicRequest(story="扣费失败", character_ids=[alice.id], format="four")
    events = []
    workflow = ComicGenerationWorkflow(
        session=session,
        request=request,
        user_id=user_id,
        ledger=_FailingLedger(session),
        analyzer=FakeAnalyzer(four_scene_descriptions),
        compositor=CharacterCompositor(),
        prompt_processor=PromptProcessor(),
        synthesizer=FakeSynthesizer(),
        storage=ImageStorage(public_base="/api/images"),
        sink=CallbackProgressSink(events.append),
        render_concurrency=1,
    )

    result = await workflow.execute()

    assert result.status == "completed"
    assert events[-1].event_type == "complete"
    async with session_factory() as check:
        comic = await check.get(Comic, result.comic_id)
        assert comic.status == "completed"
        ledger = CreditLedgerService(check)
        assert await ledger.get_balance(user_id) == 40
        assert await ledger.list_transactions(user_id) == []


class _HangingSynthesizer(FakeSynthesizer):
    """第一次渲染后一直挂起，模拟客户端断开时仍在进行的调用"""

    def __init__(self):
        super().__init__()
        self.started = asyncio.Event()

    async def render(self, reference_image, prompt, params=None, on_progress=None):
        self.calls.append({"reference_image": reference_image, "prompt": prompt})
        self.started.set()
        await asyncio.Event().wait()


async def test_cancellation_marks_comic_failed(
    session, session_factory, images_root, four_scene_descriptions
):
    user_id = unique_user()
    alice, = await seed_user(session, user_id, balance=100, names=["Alice"])
    request = GenerateComicRequest(story="断开连接", character_ids=[alice.id], format="four")
    synthesizer = _HangingSynthesizer()
    workflow = _workflow(session, request, user_id, FakeAnalyzer(four_scene_descriptions), synthesizer)

    task = asyncio.ensure_future(workflow.execute())
    await asyncio.wait_for(synthesizer.started.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    scenes = await _scenes(session_factory, workflow.comic_id)
    assert [s.status for s in scenes] == ["failed", "pending", "pending", "pending"]
    assert scenes[0].retry_count == 0
    async with session_factory() as check:
        comic = await check.get(Comic, workflow.comic_id)
        assert comic.status == "failed"
        assert "取消" in comic.error_message
        assert await CreditLedgerService(check).get_balance(user_id) == 100

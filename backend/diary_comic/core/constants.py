"""
常量定义模块

集中管理漫画生成流程中使用的状态、格式与积分常量，消除魔术字符串。
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict


class ComicStatus(str, Enum):
    """漫画任务状态

    继承str使其可以直接与字符串比较，便于写入数据库。
    """
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SceneStatus(str, Enum):
    """场景渲染状态"""
    PENDING = "pending"          # 等待渲染
    PROCESSING = "processing"    # 正在渲染
    COMPLETED = "completed"      # 渲染完成
    FAILED = "failed"            # 渲染失败


class ComicFormat(str, Enum):
    """漫画格式"""
    SINGLE = "single"            # 单张海报
    THREE = "three"              # 三格漫画
    FOUR = "four"                # 四格漫画
    FIVE_PAGE = "five_page"      # 五页故事漫画


class LayoutMode(str, Enum):
    """展示布局模式（仅记录，由前端负责排版）"""
    GRID_2X2 = "grid-2x2"
    VERTICAL_STRIP = "vertical-strip"
    HORIZONTAL_STRIP = "horizontal-strip"
    COMIC_BOOK = "comic-book"
    POSTER = "poster"


class TransactionType(str, Enum):
    """积分流水类型"""
    DEDUCTION = "deduction"
    REFILL = "refill"


class AnalysisKind(str, Enum):
    """故事分析的调用变体"""
    SCENES = "scenes"            # 多格漫画场景拆分
    FIVE_PAGE = "five_page"      # 五页故事弧线扩写
    POSTER = "poster"            # 海报构思


@dataclass(frozen=True)
class FormatProfile:
    """单个漫画格式的固定参数"""
    scene_count: int
    credit_cost: int
    default_layout: LayoutMode
    storage_kind: str            # 对象存储目录：comics 或 posters
    analysis_kind: AnalysisKind


# 格式 -> 参数表，积分预检与扣费都从这里取值
FORMAT_PROFILES: Dict[ComicFormat, FormatProfile] = {
    ComicFormat.SINGLE: FormatProfile(
        scene_count=1,
        credit_cost=20,
        default_layout=LayoutMode.POSTER,
        storage_kind="posters",
        analysis_kind=AnalysisKind.POSTER,
    ),
    ComicFormat.THREE: FormatProfile(
        scene_count=3,
        credit_cost=30,
        default_layout=LayoutMode.HORIZONTAL_STRIP,
        storage_kind="comics",
        analysis_kind=AnalysisKind.SCENES,
    ),
    ComicFormat.FOUR: FormatProfile(
        scene_count=4,
        credit_cost=40,
        default_layout=LayoutMode.GRID_2X2,
        storage_kind="comics",
        analysis_kind=AnalysisKind.SCENES,
    ),
    ComicFormat.FIVE_PAGE: FormatProfile(
        scene_count=5,
        credit_cost=50,
        default_layout=LayoutMode.COMIC_BOOK,
        storage_kind="comics",
        analysis_kind=AnalysisKind.FIVE_PAGE,
    ),
}

# 请求中可接受的格式别名
FORMAT_ALIASES: Dict[str, ComicFormat] = {
    "comic": ComicFormat.FOUR,
    "poster": ComicFormat.SINGLE,
    "five-page": ComicFormat.FIVE_PAGE,
}


def get_format_profile(comic_format: "ComicFormat | str") -> FormatProfile:
    """按格式取参数，字符串会先经过别名归一化"""
    return FORMAT_PROFILES[normalize_format(comic_format)]


def normalize_format(value: "ComicFormat | str") -> ComicFormat:
    """将请求中的格式字符串归一化为 ComicFormat

    Raises:
        ValueError: 不支持的格式
    """
    if isinstance(value, ComicFormat):
        return value
    candidate = (value or "").strip().lower()
    if candidate in FORMAT_ALIASES:
        return FORMAT_ALIASES[candidate]
    return ComicFormat(candidate)


class ProgressStep(str, Enum):
    """进度事件的阶段标识"""
    CHECKING = "checking"
    ANALYZING = "analyzing"
    GENERATING_SCENES = "generating_scenes"
    GENERATING_IMAGES = "generating_images"
    FINALIZING = "finalizing"
    COMPLETED = "completed"


class ProgressConstants:
    """进度百分比锚点"""

    CREDIT_CHECK = 2
    CHARACTER_VALIDATION = 5
    ANALYSIS = 10
    ANALYSIS_DONE = 20
    COMIC_CREATED = 30
    RENDER_START = 40
    RENDER_SPAN = 50             # 场景渲染占用 40 -> 90
    DEDUCTION = 95
    DONE = 100


class CompositorConstants:
    """角色拼接常量"""

    POSITION_LEFT = "left"
    POSITION_MIDDLE = "middle"
    POSITION_RIGHT = "right"
    MAX_IMAGE_BYTES = 20 * 1024 * 1024  # 单张头像下载上限


class ImageConstants:
    """图片存储相关常量"""

    MAX_BASE64_SIZE = 50 * 1024 * 1024  # Base64数据上限
    DEFAULT_MIME_TYPE = "image/png"


class UserConstants:
    """用户标识约束"""

    # 用户ID同时作为图片存储目录名，长度与 comics.user_id 列宽一致
    ID_PATTERN = r"^[A-Za-z0-9_-]+$"
    MAX_ID_LENGTH = 64

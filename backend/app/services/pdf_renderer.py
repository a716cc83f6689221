"""
学习文档PDF渲染
封面 + 目录 + 各章节（摘要、知识点、难点解析、术语表、补充内容）

目录页码按"每个章节一页"估算：封面第1页、目录第2页、章节从第3页依次递增。
章节实际可能跨页，目录不做精确分页。
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from fpdf import FPDF
from fpdf.enums import MethodReturnValue, XPos, YPos
import structlog

from app.core.config import settings
from app.schemas.readcast import StudyDocument
from app.services.document_exporter import ExportMetadata, get_difficulty_text

logger = structlog.get_logger()

MARGIN = 40
CONTENT_BOTTOM_RESERVE = 80  # 光标超过 页高-该值 时换页
CJK_FAMILY = "CJK"
FALLBACK_FAMILY = "Helvetica"

REGULAR_FONT_FILES = (
    "NotoSansSC-Regular.ttf",
    "NotoSerifCJKsc-Regular.otf",
    "SourceHanSans-Regular.otf",
    "NotoSansCJK-Regular.ttf",
    "NotoSansCJKsc-Regular.ttf",
    "SimHei.ttf",
)
BOLD_FONT_FILES = (
    "NotoSansSC-Bold.ttf",
    "SourceHanSans-Bold.otf",
    "NotoSansCJK-Bold.ttf",
)
SYSTEM_FONT_DIRS = (
    "/usr/share/fonts/truetype/noto",
    "/usr/share/fonts/opentype/noto",
    "/Library/Fonts/Microsoft",
)


@dataclass(frozen=True)
class TocEntry:
    title: str
    page: int


def compute_toc(document: StudyDocument) -> List[TocEntry]:
    """计算目录：摘要固定存在，其余章节内容为空时不出现"""
    sections = [("摘要", True)]
    sections.append(("知识点", bool(document.knowledge_points)))
    sections.append(("难点解析", bool(document.difficulties)))
    sections.append(("术语表", bool(document.terminology)))
    sections.append(("补充内容", bool(document.custom_content)))

    entries = []
    page = 3
    for title, present in sections:
        if present:
            entries.append(TocEntry(title=title, page=page))
            page += 1
    return entries


def default_font_dirs() -> List[str]:
    dirs = []
    if settings.FONTS_DIR:
        dirs.append(settings.FONTS_DIR)
    dirs.append(str(Path(__file__).resolve().parents[2] / "fonts"))  # backend/fonts
    dirs.append(os.path.join(os.getcwd(), "fonts"))
    dirs.extend(SYSTEM_FONT_DIRS)
    return dirs


def find_cjk_fonts(font_dirs: Sequence[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    查找中文字体

    Returns:
        (常规字体路径, 粗体字体路径)，未找到粗体时使用常规字体
    """
    def _first_existing(names):
        for directory in font_dirs:
            for name in names:
                candidate = os.path.join(directory, name)
                if os.path.isfile(candidate):
                    return candidate
        return None

    regular = _first_existing(REGULAR_FONT_FILES)
    if regular is None:
        return None, None
    return regular, _first_existing(BOLD_FONT_FILES) or regular


class StudyDocumentPDF(FPDF):
    """A4、pt单位、40pt页边距的学习文档PDF"""

    def __init__(self, font_dirs: Optional[Sequence[str]] = None):
        super().__init__(orientation="P", unit="pt", format="A4")
        self.set_margins(MARGIN, MARGIN, MARGIN)
        # 手动换页为主，自动换页兜底超长文本块
        self.set_auto_page_break(auto=True, margin=MARGIN)
        self.text_family = self._register_fonts(font_dirs if font_dirs is not None else default_font_dirs())

    def _register_fonts(self, font_dirs: Sequence[str]) -> str:
        regular, bold = find_cjk_fonts(font_dirs)
        if regular is None:
            logger.warning("未找到中文字体，PDF中的中文可能显示异常")
            return FALLBACK_FAMILY
        try:
            self.add_font(CJK_FAMILY, "", regular)
            self.add_font(CJK_FAMILY, "B", bold)
        except Exception as e:
            logger.warning("注册中文字体失败，使用默认字体", font=regular, error=str(e))
            return FALLBACK_FAMILY
        logger.info("使用中文字体", font=regular, bold_font=bold)
        return CJK_FAMILY

    @property
    def content_width(self) -> float:
        return self.w - self.l_margin - self.r_margin

    @property
    def page_break_y(self) -> float:
        return self.h - CONTENT_BOTTOM_RESERVE

    def safe_text(self, text: str) -> str:
        # 内置字体只支持latin-1，无法编码的字符替换为?
        if self.text_family == FALLBACK_FAMILY:
            return (text or "").encode("latin-1", "replace").decode("latin-1")
        return text or ""

    def use_font(self, size: float, bold: bool = False):
        self.set_font(self.text_family, "B" if bold else "", size)

    def footer(self):
        self.set_y(-30)
        self.set_font(self.text_family, "", 8)
        self.cell(0, 10, f"- {self.page_no()} -", align="C")

    def measure(self, text: str, width: float, line_height: float) -> float:
        """计算文本块在给定宽度下的渲染高度"""
        return self.multi_cell(
            width,
            line_height,
            self.safe_text(text),
            dry_run=True,
            output=MethodReturnValue.HEIGHT,
        )

    def ensure_space(self, height: float):
        """剩余空间放不下时先换页"""
        # 已在页首时不再换页，超长文本块交给自动换页
        if self.get_y() > self.t_margin and self.get_y() + height > self.page_break_y:
            self.add_page()
            self.set_y(MARGIN)

    def write_block(self, text: str, x: float, width: float, size: float, bold: bool = False,
                    align: str = "L", gap: float = 0):
        """写入一段可换行文本并推进纵向光标"""
        self.use_font(size, bold)
        line_height = size * 1.4
        self.ensure_space(self.measure(text, width, line_height))
        self.set_x(x)
        self.multi_cell(width, line_height, self.safe_text(text), align=align,
                        new_x=XPos.LMARGIN, new_y=YPos.NEXT)
        if gap:
            self.set_y(self.get_y() + gap)

    def section_page(self, title: str):
        self.add_page()
        self.set_y(MARGIN)
        self.write_block(title, MARGIN, self.content_width, 16, bold=True, gap=6)


def _render_cover(pdf: StudyDocumentPDF, document: StudyDocument, metadata: ExportMetadata):
    pdf.add_page()
    pdf.set_y(60)
    width = pdf.content_width
    pdf.write_block(document.title or metadata.title, MARGIN, width, 20, bold=True, align="C", gap=10)
    if metadata.article_title:
        pdf.write_block(f"原文：{metadata.article_title}", MARGIN, width, 11, align="C", gap=4)
    pdf.write_block(f"难度：{get_difficulty_text(metadata.difficulty)}", MARGIN, width, 10, align="C", gap=2)
    pdf.write_block(
        f"生成时间：{metadata.generated_at.strftime('%Y-%m-%d %H:%M:%S')}", MARGIN, width, 9, align="C"
    )


def _render_toc(pdf: StudyDocumentPDF, entries: List[TocEntry]):
    pdf.section_page("目录")
    for index, entry in enumerate(entries, start=1):
        pdf.use_font(10)
        pdf.set_x(MARGIN + 10)
        pdf.cell(pdf.content_width - 10, 15, pdf.safe_text(f"{index}. {entry.title}"),
                 new_x=XPos.LMARGIN, new_y=YPos.TOP)
        pdf.set_x(MARGIN)
        pdf.cell(pdf.content_width, 15, str(entry.page), align="R",
                 new_x=XPos.LMARGIN, new_y=YPos.NEXT)


def _render_sections(pdf: StudyDocumentPDF, document: StudyDocument):
    width = pdf.content_width
    indent_width = width - 20

    pdf.section_page("摘要")
    pdf.write_block(document.summary or "暂无摘要", MARGIN, width, 10)

    if document.knowledge_points:
        pdf.section_page("知识点")
        for index, kp in enumerate(document.knowledge_points, start=1):
            pdf.write_block(f"{index}. {kp.point}", MARGIN, width, 11, bold=True, gap=2)
            pdf.write_block(kp.explanation, MARGIN + 10, indent_width, 9, gap=10)

    if document.difficulties:
        pdf.section_page("难点解析")
        for index, diff in enumerate(document.difficulties, start=1):
            pdf.write_block(f"{index}. {diff.difficulty}", MARGIN, width, 11, bold=True, gap=2)
            pdf.write_block(diff.explanation, MARGIN + 10, indent_width, 9, gap=6)
            if diff.examples:
                pdf.write_block("示例：", MARGIN + 10, indent_width, 8, gap=2)
                for example in diff.examples:
                    pdf.write_block(f"• {example}", MARGIN + 20, width - 40, 8, gap=4)
            pdf.set_y(pdf.get_y() + 8)

    if document.terminology:
        pdf.section_page("术语表")
        for index, term in enumerate(document.terminology, start=1):
            pdf.write_block(f"{index}. {term.term}", MARGIN, width, 11, bold=True, gap=2)
            pdf.write_block(f"定义：{term.definition}", MARGIN + 10, indent_width, 9, gap=6)
            if term.context:
                pdf.write_block(f"上下文：{term.context}", MARGIN + 10, indent_width, 8, gap=6)
            pdf.set_y(pdf.get_y() + 8)

    if document.custom_content:
        pdf.section_page("补充内容")
        pdf.write_block(document.custom_content, MARGIN, width, 9)


def render_pdf(document: StudyDocument, metadata: ExportMetadata,
               font_dirs: Optional[Sequence[str]] = None) -> bytes:
    """
    渲染学习文档PDF

    Args:
        document: 学习文档
        metadata: 导出元数据
        font_dirs: 字体搜索目录，默认使用配置和项目fonts目录

    Returns:
        PDF文件内容
    """
    pdf = StudyDocumentPDF(font_dirs)
    pdf.set_title(pdf.safe_text(document.title or metadata.title))

    toc = compute_toc(document)
    _render_cover(pdf, document, metadata)
    _render_toc(pdf, toc)
    _render_sections(pdf, document)

    content = bytes(pdf.output())
    logger.info("PDF生成完成", pages=pdf.page_no(), size=len(content), font=pdf.text_family)
    return content

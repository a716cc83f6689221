"""
文章内容提取
从URL抓取网页并提取标题和正文，或直接解析粘贴的文本
"""
import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

from bs4 import BeautifulSoup
import httpx
import structlog
from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_exponential

from app.utils.processing_exception import ErrorType, ReadcastException

logger = structlog.get_logger()

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# 可能阻止爬虫的网站，使用更完整的请求头和更长的超时
STRICT_SITES = ("cnn.com", "nytimes.com", "washingtonpost.com", "bbc.com")

# 按特异性排序的正文选择器
CONTENT_SELECTORS = [
    "article .article-body",
    "article .post-content",
    "article .entry-content",
    "article .content",
    '[role="article"] .content',
    ".article-content",
    ".post-content",
    ".entry-content",
    ".article-body",
    "article",
    '[role="article"]',
    ".content",
    "main",
    ".main-content",
    "#content",
    "#main-content",
]

NOISE_SELECTORS = (
    "script, style, nav, footer, header, aside, .advertisement, .ad, .ads, "
    ".advertisement-container, .sidebar, .widget, .related-posts, .comments, "
    ".comment-section, .social-share, .share-buttons"
)

MIN_CONTENT_LENGTH = 50
DEFAULT_TITLE = "Untitled Article"
DEFAULT_SUGGESTION = "请尝试直接粘贴文章内容，或检查URL是否正确"


@dataclass
class ParsedArticle:
    title: str
    content: str
    source: Optional[str] = None


def _is_strict_site(url: str) -> bool:
    return any(site in url for site in STRICT_SITES)


def _build_headers(strict: bool) -> dict:
    headers = {
        "User-Agent": USER_AGENT,
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.9",
        "Upgrade-Insecure-Requests": "1",
        "Cache-Control": "max-age=0",
    }
    if strict:
        headers.update({
            "Sec-Fetch-Dest": "document",
            "Sec-Fetch-Mode": "navigate",
            "Sec-Fetch-Site": "none",
            "Sec-Fetch-User": "?1",
            "DNT": "1",
            "Referer": "https://www.google.com/",
        })
    return headers


def _clean_extracted_text(content: str) -> str:
    """去除 [image] 等标记和图片说明，保留段落"""
    content = re.sub(r'\[.*?\]', '', content)
    content = re.sub(r'\(.*?图.*?\)', '', content)
    content = re.sub(r'\n{3,}', '\n\n', content)
    content = re.sub(r'[ \t]+', ' ', content)
    return content.strip()


def _paragraph_text(element) -> str:
    paragraphs = [p.get_text().strip() for p in element.find_all("p")]
    return "\n\n".join(p for p in paragraphs if len(p) > 20)


def extract_article_from_html(html: str) -> ParsedArticle:
    """
    从HTML中提取标题和正文

    Raises:
        ValueError: 提取到的正文过短
    """
    soup = BeautifulSoup(html, "html.parser")

    title = ""
    for meta in (soup.find("meta", property="og:title"), soup.find("meta", attrs={"name": "twitter:title"})):
        if meta and meta.get("content"):
            title = meta["content"]
            break
    if not title and soup.title and soup.title.string:
        title = soup.title.string
    if not title and soup.h1:
        title = soup.h1.get_text()

    for element in soup.select(NOISE_SELECTORS):
        element.decompose()

    content = ""
    for selector in CONTENT_SELECTORS:
        element = soup.select_one(selector)
        if element is not None:
            content = _paragraph_text(element)
            if len(content) > 200:
                break

    if len(content) < 200:
        content = _paragraph_text(soup)
    if len(content) < 200 and soup.body:
        content = soup.body.get_text().strip()

    content = _clean_extracted_text(content)
    if len(content) < MIN_CONTENT_LENGTH:
        raise ValueError("Extracted content is too short or empty")

    return ParsedArticle(title=title.strip() or DEFAULT_TITLE, content=content)


def _describe_failure(url: str, error: Exception):
    """把底层错误转成用户可理解的消息和建议"""
    strict = _is_strict_site(url)
    message = "无法解析文章URL"
    suggestion = DEFAULT_SUGGESTION

    if isinstance(error, httpx.TimeoutException):
        message = "请求超时，请稍后重试"
        if strict:
            suggestion = "该网站响应较慢，建议直接复制文章内容粘贴导入"
    elif isinstance(error, httpx.ConnectError):
        message = "无法访问该URL，请检查网络连接"
    elif isinstance(error, httpx.TransportError):
        if strict:
            message = "该网站（CNN/NYT等）可能阻止了自动访问"
            suggestion = "建议：1) 打开文章页面，复制全文内容；2) 选择文本导入并粘贴内容"
        else:
            message = "网络连接失败，请检查URL是否正确或稍后重试"
    elif isinstance(error, httpx.HTTPStatusError):
        code = error.response.status_code
        if code == 404:
            message = "文章不存在（404错误）"
        elif code == 403:
            message = "访问被拒绝，该网站可能阻止了自动访问"
            suggestion = "建议直接复制文章内容，使用文本导入功能"

    return message, suggestion


async def parse_article_from_url(url: str, retries: int = 3, client: Optional[httpx.AsyncClient] = None) -> ParsedArticle:
    """
    抓取URL并提取文章（失败时指数退避重试）

    Raises:
        ReadcastException: extraction_failed，hint中带有补救建议
    """
    strict = _is_strict_site(url)
    timeout = 45.0 if strict else 30.0

    async def _fetch(http: httpx.AsyncClient) -> ParsedArticle:
        response = await http.get(url, headers=_build_headers(strict), timeout=timeout)
        response.raise_for_status()
        parsed = extract_article_from_html(response.text)
        parsed.source = urlparse(url).hostname
        return parsed

    owns_client = client is None
    http = client or httpx.AsyncClient(follow_redirects=True, max_redirects=5)
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(retries),
            wait=wait_exponential(multiplier=1, min=1, max=5),
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info("重试抓取文章", url=url, attempt=attempt.retry_state.attempt_number)
                return await _fetch(http)
    except RetryError as e:
        last_error = e.last_attempt.exception()
        message, suggestion = _describe_failure(url, last_error)
        logger.warning("文章抓取失败", url=url, error=str(last_error))
        raise ReadcastException(
            ErrorType.EXTRACTION_FAILED,
            f"{message}: {last_error}",
            error_details={"url": url},
            hint=suggestion,
        )
    finally:
        if owns_client:
            await http.aclose()


def parse_article_from_text(text: str, title: Optional[str] = None) -> ParsedArticle:
    """直接解析粘贴的文本，未提供标题时取第一行"""
    content = (text or "").strip()
    if not title:
        first_line = content.split("\n", 1)[0].strip()
        title = first_line[:200] if first_line else DEFAULT_TITLE
    return ParsedArticle(title=title, content=content)

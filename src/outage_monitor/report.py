import html
import logging
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from .models import OutageRecord

logger = logging.getLogger(__name__)

REPORT_SUFFIX = ".md"

# Telegram 单条消息最大长度
MESSAGE_LIMIT = 4096
MORE_LINE_RESERVE = 32


def _cell(value: str) -> str:
    # 表格单元格内不能出现 | 和换行
    return (value or "-").replace("|", "/").replace("\n", " ")


def render_markdown(records: Sequence[OutageRecord], place: str,
                    generated_at: Optional[datetime] = None) -> str:
    """Render the outage report document"""
    generated_at = generated_at or datetime.now()
    lines = [
        "# Отчет об отключениях электроэнергии",
        "",
        f"**Дата формирования отчета:** {generated_at.strftime('%d.%m.%Y %H:%M:%S')}",
        f"**Поиск по месту:** {place}",
        f"**Найдено записей:** {len(records)}",
        "",
    ]

    if not records:
        lines.append(f"❌ Данные об отключениях для {place} не найдены.")
        return "\n".join(lines) + "\n"

    lines += [
        "## Таблица отключений",
        "",
        "| № | Район | Место | Адреса | Начало | Окончание | Информация об энергии |",
        "|---|-------|-------|--------|--------|-----------|-----------------------|",
    ]
    for num, r in enumerate(records, 1):
        lines.append(
            f"| {num} | {_cell(r.district)} | {_cell(r.place)} | {_cell(r.addresses)} "
            f"| {_cell(r.date_from)} | {_cell(r.date_to)} | {_cell(r.energy)} |"
        )

    districts = Counter(r.district or "Не указан" for r in records)
    lines += ["", "## Статистика", "", f"- **Общее количество отключений:** {len(records)}", "- **По районам:**"]
    for district, count in districts.most_common():
        lines.append(f"  - {district}: {count}")

    lines += ["", "---", "*Отчет сгенерирован автоматически*"]
    return "\n".join(lines) + "\n"


def format_records(records: Sequence[OutageRecord], limit: int = 5,
                   max_length: Optional[int] = None) -> str:
    """Short HTML list of records for chat messages

    With max_length set, entries that would not fit are dropped and counted
    in the trailing "и ещё N" line.
    """
    parts = []
    used = 0
    for num, r in enumerate(records[:limit], 1):
        entry = (
            f"<b>{num}. {html.escape(r.place or '-')}</b>\n"
            f"🕐 {html.escape(r.date_from or '-')} — {html.escape(r.date_to or '-')}\n"
            f"🏠 {html.escape(r.addresses or '-')}"
        )
        # 预留分隔符和 "… и ещё N" 行的长度
        if max_length is not None and used + len(entry) + 2 + MORE_LINE_RESERVE > max_length:
            break
        parts.append(entry)
        used += len(entry) + 2
    if len(records) > len(parts):
        parts.append(f"… и ещё {len(records) - len(parts)}")
    return "\n\n".join(parts)


def format_summary(records: Sequence[OutageRecord], place: str,
                   checked_at: Optional[datetime] = None, limit: int = 5) -> str:
    """Notification text sent to subscribers when the outage list changes"""
    checked_at = checked_at or datetime.now()
    text = (
        "🔔 <b>Уведомление о новых отключениях</b>\n\n"
        f"📍 Место: {html.escape(place)}\n"
        f"📊 Найдено: {len(records)}\n"
        f"📅 Проверено: {checked_at.strftime('%d.%m.%Y %H:%M')}\n"
    )
    if records:
        text += "\n" + format_records(records, limit) + "\n"
    text += "\n📄 Полный отчет: /get"
    return text


class ReportWriter:
    """Writes markdown reports and keeps only the newest few"""

    def __init__(self, reports_dir: Path, place: str, keep: int = 10):
        self.reports_dir = Path(reports_dir)
        self.place = place
        self.keep = keep

    def save(self, records: Sequence[OutageRecord], prefix: str = "report",
             now: Optional[datetime] = None) -> Path:
        """Write a report file, then rotate old ones"""
        now = now or datetime.now()
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        path = self.reports_dir / f"{prefix}-{now.strftime('%Y-%m-%d-%H-%M-%S')}{REPORT_SUFFIX}"
        path.write_text(render_markdown(records, self.place, now), encoding="utf-8")
        logger.info(f"📄 报告已保存: {path}")

        try:
            self.rotate()
        except OSError as e:
            logger.warning(f"报告轮转失败: {e}")
        return path

    def _reports(self) -> List[Path]:
        if not self.reports_dir.exists():
            return []
        files = [
            p for p in self.reports_dir.iterdir()
            if p.is_file() and p.suffix == REPORT_SUFFIX and not p.name.startswith(".")
        ]
        return sorted(files, key=lambda p: (p.stat().st_mtime, p.name), reverse=True)

    def rotate(self) -> int:
        """Delete all but the newest `keep` reports"""
        removed = 0
        for path in self._reports()[self.keep:]:
            path.unlink()
            removed += 1
        if removed:
            logger.info(f"🗑️ 已删除旧报告 {removed} 个")
        return removed

    def latest(self) -> Optional[Path]:
        reports = self._reports()
        return reports[0] if reports else None

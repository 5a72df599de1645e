from __future__ import annotations

"""
i18n catalog (Traditional Chinese, the patient's language).
"""

MESSAGES = {
    # Reminder card
    "reminder_title": "⚕️ 吃藥提醒｜{meal_label}",
    "reminder_intro": "請記得服用：",
    "reminder_drug": "• {drug}",
    "reminder_retry": "⚠️ 這是第 {n} 次提醒",
    # Buttons
    "btn_taken": "✅ 吃過了",
    "btn_snooze": "⏰ 等一下吃",
    # Action follow-ups
    "taken_ack": "✅ 已記錄！太棒了，記得按時服藥有助於健康！",
    "dependent_hint": "💡 提醒：請於 {delay} 分鐘後（約 {at}）記得服用{meal_label}哦！",
    "snooze_ack": "⏰ 好的，下一次提醒將在 {cooldown} 分鐘後發送（已提醒 {count}/{max} 次）",
    "snooze_last": (
        "⏰ 好的，這是最後一次延後（已提醒 {count}/{max} 次）。"
        "若 {cooldown} 分鐘後仍未服用，將記錄為未服藥。"
    ),
    "exceeded": "⚠️ 已超過最大提醒次數（{max}次），請記得盡快服用藥物！",
    "already_taken": "👌 {meal_label} 今天已記錄為已服用。",
    "already_missed": "❌ {meal_label} 今天已記錄為未服藥。",
    "card_expired": "⌛ 這是 {day} 的{meal_label}提醒，已過期，不會記錄。",
    # Admin / commands
    "welcome": "您好！我是吃藥提醒機器人 🤖\n\n輸入 /help 查看更多功能！",
    "setup_done": "✅ 吃藥提醒排程已設定完成！\n\n📅 提醒時間：\n{lines}\n\n您將在每次用藥時間收到提醒訊息！",
    "setup_line": "• {meal_label} {time} - {drugs}",
    "status_header": "📋 今日（{day}）服藥狀態：",
    "status_line": "{emoji} {meal_label} {time}: {status}（{count}/{max}）",
    "status_unregistered": "尚未設定提醒，請先輸入 /setup。",
    "fire_usage": "用法：/fire <slot_id>\n可用：{slots}",
    "fire_sent": "🧪 已發送 {meal_label} 提醒。",
    "fire_skipped": "⏭️ {meal_label} 今天已是 {status}，不再提醒。",
    "unknown_slot": "找不到此提醒項目。",
    "help_text": (
        "📖 吃藥提醒機器人使用說明：\n\n"
        "🤖 可用指令：\n"
        "• /setup - 設定每日提醒排程\n"
        "• /status - 查看今日服藥狀態\n"
        "• /fire <slot_id> - 立即發送指定提醒\n"
        "• /help - 顯示此說明\n\n"
        "💊 提醒規則：\n"
        "• 選擇「等一下吃」會在 {cooldown} 分鐘後再次提醒\n"
        "• 最多提醒 {max} 次，之後記錄為未服藥"
    ),
}

STATUS_EMOJI = {
    "PENDING": "⏳",
    "SNOOZED": "⏰",
    "TAKEN": "✅",
    "MISSED": "❌",
}

STATUS_LABEL = {
    "PENDING": "待服用",
    "SNOOZED": "提醒中",
    "TAKEN": "已服用",
    "MISSED": "未服藥",
}


def fmt(key: str, **kwargs) -> str:
    return MESSAGES[key].format(**kwargs)

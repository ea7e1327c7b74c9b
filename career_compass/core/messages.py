"""User-facing message catalog keyed by reason code.

The product is Japanese-only; handlers and services look up text here so
that the machine reason code and the localized message never drift apart.
"""

MESSAGES = {
    # Generic
    "unauthorized": "Unauthorized",
    "validation_error": "入力内容に誤りがあります",
    "missing_fields": "必須項目が入力されていません",
    "not_found": "データが見つかりません",
    "internal_error": "サーバーエラーが発生しました",
    "upstream_error": "外部サービスとの通信に失敗しました",
    "conflict": "処理が競合しました。もう一度お試しください",

    # Entitlements
    "limit_exceeded": "今月の分析回数の上限に達しました",
    "ticket_required": "分析を続けるにはチケットが必要です",
    "save_not_allowed": "分析結果の保存は有料プランでご利用いただけます",
    "invalid_analysis_type": "無効な分析タイプです",

    # Tickets
    "invalid_ticket_type": "無効なチケットタイプです",
    "invalid_quantity": "購入数は1〜10の間で指定してください",
    "ticket_mismatch": "このチケットでは指定された分析を実行できません",
    "no_ticket_available": "利用可能なチケットがありません",

    # Referrals
    "invalid_code": "無効な紹介コードです",
    "expired": "紹介コードの有効期限が切れています",
    "self_referral": "自分の紹介コードは使用できません",
    "already_used": "既に紹介特典を利用済みです",
    "referrer_not_premium": "紹介者が有料プランに加入していません",
    "referrer_no_analysis": "紹介者がまだ分析を完了していません",
    "referral_subscription_required": "紹介コードの発行には有料プランへの加入が必要です",
    "referral_analysis_required": "紹介コードの発行には1回以上の分析完了が必要です",
    "referral_applied": "紹介コードが適用されました",

    # Checkout and subscriptions
    "invalid_plan_configuration": "Invalid plan configuration",
    "profile_not_found": "プロフィールが見つかりません",
    "payment_error": "決済処理でエラーが発生しました",
    "subscription_not_found": "サブスクリプションが見つかりません",
    "subscription_canceled": "サブスクリプションを解約しました",
    "subscription_downgraded": "無料プランに変更しました",
    "subscription_paused": "サブスクリプションを一時停止しました",
    "invalid_pause_duration": "一時停止期間は1〜12ヶ月の間で指定してください",

    # Contact and planning
    "invalid_email": "有効なメールアドレスを入力してください",
    "contact_received": "お問い合わせを受け付けました",
    "analysis_saved": "分析結果を保存しました",
}


def message_for(code: str, default: str | None = None) -> str:
    return MESSAGES.get(code, default or MESSAGES["internal_error"])

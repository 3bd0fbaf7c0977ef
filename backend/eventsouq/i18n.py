"""Arabic/English message catalogue used for API responses and notifications."""

from typing import Optional

from .config import SUPPORTED_LANGUAGES, settings


MESSAGES: dict[str, dict[str, str]] = {
    # errors
    "internal_error": {"ar": "حدث خطأ غير متوقع. حاول مرة أخرى.", "en": "An unexpected error occurred. Please try again."},
    "not_found": {"ar": "العنصر غير موجود.", "en": "Item not found."},
    "forbidden": {"ar": "ليس لديك صلاحية لتنفيذ هذا الإجراء.", "en": "You are not allowed to perform this action."},
    "not_authenticated": {"ar": "يرجى تسجيل الدخول.", "en": "Please sign in."},
    "token_expired": {"ar": "انتهت صلاحية الجلسة. سجّل الدخول مرة أخرى.", "en": "Session expired. Please sign in again."},
    "invalid_credentials": {"ar": "البريد الإلكتروني أو كلمة المرور غير صحيحة.", "en": "Invalid email or password."},
    "email_taken": {"ar": "البريد الإلكتروني مستخدم بالفعل.", "en": "Email is already registered."},
    "admin_only": {"ar": "هذه الصفحة للمشرفين فقط.", "en": "Admins only."},
    "organizer_only": {"ar": "متاح للمنظمين فقط.", "en": "Organizers only."},
    "provider_only": {"ar": "متاح لمزودي الخدمات فقط.", "en": "Service providers only."},
    "invalid_pagination": {"ar": "قيم الصفحات غير صالحة.", "en": "Invalid pagination values."},
    "rate_limited": {"ar": "طلبات كثيرة جداً. حاول بعد قليل.", "en": "Too many requests. Try again shortly."},
    "unknown_kind": {"ar": "نوع العنصر غير معروف.", "en": "Unknown item type."},
    "action_in_progress": {"ar": "جارٍ تنفيذ هذا الإجراء بالفعل.", "en": "This action is already in progress."},
    "item_not_pending": {"ar": "تمت مراجعة هذا العنصر مسبقاً.", "en": "This item has already been reviewed."},
    "rejection_reason_required": {"ar": "يرجى كتابة سبب الرفض.", "en": "Please provide a rejection reason."},
    "event_not_found": {"ar": "الفعالية غير موجودة.", "en": "Event not found."},
    "service_not_found": {"ar": "الخدمة غير موجودة.", "en": "Service not found."},
    "provider_not_found": {"ar": "طلب مزود الخدمة غير موجود.", "en": "Provider application not found."},
    "user_not_found": {"ar": "المستخدم غير موجود.", "en": "User not found."},
    "group_not_found": {"ar": "المجموعة غير موجودة.", "en": "Group not found."},
    "report_not_found": {"ar": "البلاغ غير موجود.", "en": "Report not found."},
    "request_not_found": {"ar": "الطلب غير موجود.", "en": "Request not found."},
    "notification_not_found": {"ar": "الإشعار غير موجود.", "en": "Notification not found."},
    "notification_delete_failed": {"ar": "تعذر حذف الإشعار.", "en": "Could not delete the notification."},
    "withdrawal_not_found": {"ar": "طلب السحب غير موجود.", "en": "Withdrawal request not found."},
    "event_not_available": {"ar": "الفعالية غير متاحة للحجز.", "en": "This event is not open for booking."},
    "service_not_available": {"ar": "الخدمة غير متاحة للحجز.", "en": "This service is not open for booking."},
    "event_full": {"ar": "الفعالية مكتملة العدد.", "en": "This event is fully booked."},
    "application_exists": {"ar": "لديك طلب قيد المراجعة بالفعل.", "en": "You already have an application under review."},
    "group_full": {"ar": "المجموعة ممتلئة.", "en": "This group is full."},
    "already_member": {"ar": "أنت عضو في هذه المجموعة بالفعل.", "en": "You are already a member of this group."},
    "not_group_member": {"ar": "يجب أن تكون عضواً في المجموعة.", "en": "You must be a member of this group."},
    "notification_no_actions": {"ar": "لا توجد إجراءات لهذا الإشعار.", "en": "This notification has no actions."},
    "cannot_follow_self": {"ar": "لا يمكنك متابعة نفسك.", "en": "You cannot follow yourself."},
    "cannot_follow_admin": {"ar": "لا يمكن متابعة حسابات المشرفين.", "en": "Admin accounts cannot be followed."},
    "already_following": {"ar": "أنت تتابع هذا المستخدم بالفعل.", "en": "You already follow this user."},
    "follow_request_pending": {"ar": "طلب المتابعة قيد الانتظار.", "en": "A follow request is already pending."},
    "not_following": {"ar": "أنت لا تتابع هذا المستخدم.", "en": "You do not follow this user."},
    "friend_request_exists": {"ar": "يوجد طلب صداقة بالفعل.", "en": "A friend request already exists."},
    "already_friends": {"ar": "أنتما صديقان بالفعل.", "en": "You are already friends."},
    "cannot_friend_self": {"ar": "لا يمكنك إرسال طلب صداقة لنفسك.", "en": "You cannot befriend yourself."},
    "request_already_handled": {"ar": "تمت معالجة هذا الطلب مسبقاً.", "en": "This request was already handled."},
    "invalid_action": {"ar": "إجراء غير صالح.", "en": "Invalid action."},
    "share_requires_friends": {"ar": "يمكنك المشاركة مع أصدقائك فقط.", "en": "You can only share with your friends."},
    "invalid_report_status": {"ar": "حالة البلاغ غير صالحة.", "en": "Invalid report status."},
    "withdrawal_minimum": {"ar": "الحد الأدنى للسحب هو {minimum} ريال.", "en": "The minimum withdrawal is {minimum} SAR."},
    "bank_details_required": {"ar": "بيانات الحساب البنكي مطلوبة.", "en": "Bank account details are required."},
    "insufficient_balance": {
        "ar": "الرصيد غير كافٍ. المتاح للسحب: {available} ريال.",
        "en": "Insufficient balance. Available to withdraw: {available} SAR.",
    },
    "withdrawal_not_pending": {"ar": "تمت معالجة طلب السحب مسبقاً.", "en": "This withdrawal was already processed."},
    # success messages
    "registered": {"ar": "تم إنشاء الحساب بنجاح.", "en": "Account created successfully."},
    "event_approved": {"ar": "تمت الموافقة على الفعالية.", "en": "Event approved."},
    "service_approved": {"ar": "تمت الموافقة على الخدمة.", "en": "Service approved."},
    "provider_approved": {"ar": "تمت الموافقة على مزود الخدمة.", "en": "Provider approved."},
    "event_rejected": {"ar": "تم رفض الفعالية.", "en": "Event rejected."},
    "service_rejected": {"ar": "تم رفض الخدمة.", "en": "Service rejected."},
    "provider_rejected": {"ar": "تم رفض طلب مزود الخدمة.", "en": "Provider application rejected."},
    "event_deleted": {"ar": "تم حذف الفعالية.", "en": "Event deleted."},
    "service_deleted": {"ar": "تم حذف الخدمة.", "en": "Service deleted."},
    "bulk_approved": {"ar": "تمت الموافقة على {count} عنصر.", "en": "{count} items approved."},
    "report_submitted": {"ar": "تم إرسال البلاغ. شكراً لك.", "en": "Report submitted. Thank you."},
    "report_updated": {"ar": "تم تحديث البلاغ.", "en": "Report updated."},
    "setting_updated": {"ar": "تم حفظ الإعداد.", "en": "Setting saved."},
    "followed": {"ar": "تمت المتابعة.", "en": "You are now following this user."},
    "follow_requested": {"ar": "تم إرسال طلب المتابعة.", "en": "Follow request sent."},
    "unfollowed": {"ar": "تم إلغاء المتابعة.", "en": "Unfollowed."},
    "follow_request_cancelled": {"ar": "تم إلغاء طلب المتابعة.", "en": "Follow request cancelled."},
    "follow_request_accepted": {"ar": "تم قبول طلب المتابعة.", "en": "Follow request accepted."},
    "follow_request_rejected": {"ar": "تم رفض طلب المتابعة.", "en": "Follow request rejected."},
    "friend_request_sent": {"ar": "تم إرسال طلب الصداقة.", "en": "Friend request sent."},
    "friend_request_accepted": {"ar": "تم قبول طلب الصداقة.", "en": "Friend request accepted."},
    "friend_request_rejected": {"ar": "تم رفض طلب الصداقة.", "en": "Friend request rejected."},
    "friend_request_cancelled": {"ar": "تم إلغاء طلب الصداقة.", "en": "Friend request cancelled."},
    "group_joined": {"ar": "تم الانضمام إلى المجموعة.", "en": "You joined the group."},
    "invitation_declined": {"ar": "تم رفض الدعوة.", "en": "Invitation declined."},
    "invitation_sent": {"ar": "تم إرسال الدعوة.", "en": "Invitation sent."},
    "notification_deleted": {"ar": "تم حذف الإشعار.", "en": "Notification deleted."},
    "notifications_read": {"ar": "تم تعليم الإشعارات كمقروءة.", "en": "Notifications marked as read."},
    "event_shared": {"ar": "تمت مشاركة الفعالية.", "en": "Event shared."},
    "withdrawal_requested": {"ar": "تم إرسال طلب السحب بنجاح.", "en": "Withdrawal request submitted."},
    "withdrawal_completed": {"ar": "تم تنفيذ طلب السحب.", "en": "Withdrawal completed."},
    "withdrawal_rejected": {"ar": "تم رفض طلب السحب وإعادة المبلغ.", "en": "Withdrawal rejected and refunded."},
    # notification templates
    "notif.event_approved.title": {"ar": "تمت الموافقة على فعاليتك", "en": "Event approved"},
    "notif.event_approved.message": {
        "ar": "تمت الموافقة على فعالية \"{title}\" وأصبحت متاحة للجمهور.",
        "en": "Your event \"{title}\" was approved and is now public.",
    },
    "notif.service_approved.title": {"ar": "تمت الموافقة على خدمتك", "en": "Service approved"},
    "notif.service_approved.message": {
        "ar": "تمت الموافقة على خدمة \"{title}\".",
        "en": "Your service \"{title}\" was approved.",
    },
    "notif.provider_approved.title": {"ar": "تم قبولك كمزود خدمة", "en": "Provider application approved"},
    "notif.provider_approved.message": {
        "ar": "تمت الموافقة على طلب \"{title}\". يمكنك الآن إضافة خدماتك.",
        "en": "Your application \"{title}\" was approved. You can now list services.",
    },
    "notif.event_rejected.title": {"ar": "تم رفض الفعالية", "en": "Event rejected"},
    "notif.event_rejected.message": {
        "ar": "تم رفض فعالية \"{title}\". السبب: {comment}",
        "en": "Your event \"{title}\" was rejected. Reason: {comment}",
    },
    "notif.service_rejected.title": {"ar": "تم رفض الخدمة", "en": "Service rejected"},
    "notif.service_rejected.message": {
        "ar": "تم رفض خدمة \"{title}\". السبب: {comment}",
        "en": "Your service \"{title}\" was rejected. Reason: {comment}",
    },
    "notif.provider_rejected.title": {"ar": "تم رفض طلب مزود الخدمة", "en": "Provider application rejected"},
    "notif.provider_rejected.message": {
        "ar": "تم رفض طلب \"{title}\". السبب: {comment}",
        "en": "Your application \"{title}\" was rejected. Reason: {comment}",
    },
    "notif.follow.title": {"ar": "متابع جديد", "en": "New follower"},
    "notif.follow.message": {"ar": "{name} بدأ بمتابعتك.", "en": "{name} started following you."},
    "notif.follow_request.title": {"ar": "طلب متابعة", "en": "Follow request"},
    "notif.follow_request.message": {"ar": "{name} يريد متابعتك.", "en": "{name} wants to follow you."},
    "notif.friend_request.title": {"ar": "طلب صداقة جديد", "en": "New friend request"},
    "notif.friend_request.message": {"ar": "{name} أرسل لك طلب صداقة.", "en": "{name} sent you a friend request."},
    "notif.friend_accepted.title": {"ar": "تم قبول طلب الصداقة", "en": "Friend request accepted"},
    "notif.friend_accepted.message": {"ar": "{name} قبل طلب صداقتك.", "en": "{name} accepted your friend request."},
    "notif.group_invitation.title": {"ar": "دعوة للانضمام إلى مجموعة", "en": "Group invitation"},
    "notif.group_invitation.message": {
        "ar": "{name} يدعوك للانضمام إلى مجموعة \"{group}\".",
        "en": "{name} invited you to join \"{group}\".",
    },
    "notif.event_shared.title": {"ar": "مشاركة فعالية", "en": "Event shared with you"},
    "notif.event_shared.message": {
        "ar": "{name} شارك معك فعالية \"{title}\".",
        "en": "{name} shared the event \"{title}\" with you.",
    },
    "notif.withdrawal_requested.title": {"ar": "تم استلام طلب السحب", "en": "Withdrawal request received"},
    "notif.withdrawal_requested.message": {
        "ar": "تم استلام طلب سحب {amount} ريال وسيتم معالجته خلال 2-5 أيام عمل",
        "en": "Your withdrawal of {amount} SAR was received and will be processed within 2-5 business days.",
    },
    "notif.withdrawal_completed.title": {"ar": "تم تحويل المبلغ", "en": "Withdrawal completed"},
    "notif.withdrawal_completed.message": {
        "ar": "تم تحويل {amount} ريال إلى حسابك البنكي.",
        "en": "{amount} SAR was transferred to your bank account.",
    },
    "notif.withdrawal_rejected.title": {"ar": "تم رفض طلب السحب", "en": "Withdrawal rejected"},
    "notif.withdrawal_rejected.message": {
        "ar": "تم رفض طلب سحب {amount} ريال وإعادة المبلغ إلى رصيدك.",
        "en": "Your withdrawal of {amount} SAR was rejected and refunded to your balance.",
    },
    "notif.badge_earned.title": {"ar": "شارة جديدة!", "en": "New badge!"},
    "notif.badge_earned.message": {
        "ar": "حصلت على شارة \"{badge}\" و{points} نقطة.",
        "en": "You earned the \"{badge}\" badge and {points} points.",
    },
}


def normalize_language(value: Optional[str]) -> str:
    if not value:
        return settings.default_language
    lang = value.strip().lower()[:2]
    return lang if lang in SUPPORTED_LANGUAGES else settings.default_language


def language_from_header(accept_language: Optional[str]) -> str:
    """Pick the first supported language from an Accept-Language header."""
    if not accept_language:
        return settings.default_language
    for part in accept_language.split(","):
        tag = part.split(";")[0].strip().lower()[:2]
        if tag in SUPPORTED_LANGUAGES:
            return tag
    return settings.default_language


def translate(key: str, lang: Optional[str] = None, **params) -> str:
    entry = MESSAGES.get(key)
    if entry is None:
        return key
    text = entry.get(normalize_language(lang)) or entry["en"]
    if params:
        try:
            return text.format(**params)
        except (KeyError, IndexError):
            return text
    return text

from datetime import datetime, timezone

from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import BooleanField, Field, PasswordField, StringField, TextAreaField
from wtforms.validators import (
    AnyOf,
    DataRequired,
    Email,
    Length,
    Optional,
    Regexp,
    StopValidation,
    URL,
    ValidationError,
)

from models.task import StepStatus, TaskPriority, TaskStatus, TaskVisibility
from models.user import CONFIGURABLE_NOTIFICATION_TYPES, DigestFrequency, UserRole

DOMAIN_PATTERN = r"^(?!-)(?:[a-zA-Z0-9-]{1,63}\.)+[a-zA-Z]{2,}$"


def _upper(value):
    return value.strip().upper() if isinstance(value, str) else value


def _strip(value):
    return value.strip() if isinstance(value, str) else value


class IsString:
    """Stops the chain when a JSON value that should be text is not a string."""

    def __init__(self, message):
        self.message = message

    def __call__(self, form, field):
        if field.data is not None and not isinstance(field.data, str):
            raise StopValidation(self.message)


def first_error(form) -> str:
    """Return the first validation message of a form."""
    for messages in form.errors.values():
        if isinstance(messages, dict):
            messages = [m for values in messages.values() for m in values]
        if messages:
            return messages[0]
    return "Invalid request"


class JSONField(Field):
    """Keeps the decoded JSON value (object, list item or scalar) untouched."""

    def process_formdata(self, valuelist):
        self.data = valuelist[0] if valuelist else None


class JSONListField(Field):
    """Collects every value sent for the key; JSON arrays arrive one item per value."""

    def process_formdata(self, valuelist):
        self.data = list(valuelist)


class IntegerListField(JSONListField):
    def process_formdata(self, valuelist):
        try:
            self.data = [int(value) for value in valuelist if value is not None]
        except (TypeError, ValueError):
            self.data = []
            raise ValueError(self.gettext("Not a valid list of ids.")) from None


class NullableIntegerField(Field):
    """Integer field that accepts JSON ``null`` and empty strings as None."""

    def process_formdata(self, valuelist):
        if not valuelist or valuelist[0] in (None, ""):
            self.data = None
            return
        value = valuelist[0]
        if isinstance(value, bool):
            raise ValueError(self.gettext("Not a valid integer value."))
        try:
            self.data = int(value)
        except (TypeError, ValueError):
            self.data = None
            raise ValueError(self.gettext("Not a valid integer value.")) from None


class IsoDateTimeField(Field):
    """ISO 8601 timestamp or date, stored as naive UTC."""

    def process_formdata(self, valuelist):
        if not valuelist or valuelist[0] in (None, ""):
            self.data = None
            return
        text = str(valuelist[0]).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            self.data = None
            raise ValueError(self.gettext("Not a valid datetime value.")) from None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        self.data = parsed


class ApiForm(FlaskForm):
    """Base for JSON request bodies; CSRF is checked globally by CSRFProtect."""

    class Meta:
        csrf = False


class RegisterForm(ApiForm):
    name = StringField("Name", [DataRequired(message="Name is required")], filters=[_strip])
    email = StringField(
        "Email", [DataRequired(message="Email is required"), Email(message="Invalid email")]
    )
    password = PasswordField(
        "Password",
        [
            DataRequired(message="Password is required"),
            Length(min=8, message="Password must be at least 8 characters."),
        ],
    )
    organization_id = NullableIntegerField("Organization")
    organization_name = StringField("Organization name", filters=[_strip])


class AdminRegisterForm(ApiForm):
    name = StringField(
        "Name",
        [DataRequired(message="Name is required"), Length(max=200, message="Name is too long")],
        filters=[_strip],
    )
    email = StringField(
        "Email", [DataRequired(message="Email is required"), Email(message="Invalid email")]
    )
    password = PasswordField(
        "Password",
        [
            DataRequired(message="Password is required"),
            Length(min=8, message="Password must be at least 8 characters."),
            Length(max=200, message="Password is too long"),
        ],
    )
    organization_name = StringField(
        "Organization name",
        [
            DataRequired(message="Organization name is required"),
            Length(max=120, message="Organization name is too long"),
        ],
        filters=[_strip],
    )
    organization_domain = StringField(
        "Organization domain",
        [
            DataRequired(message="Domain is required"),
            Length(max=120, message="Domain is too long"),
            Regexp(DOMAIN_PATTERN, message="Domain must be a valid hostname"),
        ],
        filters=[_strip],
    )


class LoginForm(ApiForm):
    email = StringField(
        "Email", [DataRequired(message="Email is required"), Email(message="Invalid email")]
    )
    password = PasswordField("Password", [DataRequired(message="Password is required")])


class OtpRequestForm(ApiForm):
    email = StringField(
        "Email", [DataRequired(message="Email is required"), Email(message="Invalid email")]
    )


class OtpVerifyForm(ApiForm):
    email = StringField(
        "Email", [DataRequired(message="Email is required"), Email(message="Invalid email")]
    )
    code = StringField(
        "Code",
        [
            DataRequired(message="Code is required"),
            Regexp(r"^\d{6}$", message="Code must be 6 digits"),
        ],
        filters=[lambda value: str(value).strip() if value is not None else value],
    )


class InvitationForm(ApiForm):
    email = StringField(
        "Email", [DataRequired(message="Email is required"), Email(message="Invalid email")]
    )
    role = StringField(
        "Role",
        [Optional(), AnyOf([UserRole.ADMIN.value, UserRole.USER.value], message="Invalid role")],
        filters=[_upper],
    )


class AcceptInvitationForm(ApiForm):
    token = StringField("Token", [DataRequired(message="Token is required")])
    name = StringField("Name", [DataRequired(message="Name is required")], filters=[_strip])
    password = PasswordField(
        "Password",
        [
            DataRequired(message="Password is required"),
            Length(min=8, message="Password must be at least 8 characters."),
        ],
    )


class TeamForm(ApiForm):
    name = StringField("Name", [DataRequired(message="Name is required")], filters=[_strip])
    timezone = StringField("Timezone", [Optional()])


class ProfileForm(ApiForm):
    def __init__(self, *args, user=None, **kwargs):
        super().__init__(*args, **kwargs)
        self.current_user = user

    name = StringField("Name", [Optional(), Length(max=120)], filters=[_strip])
    email = StringField("Email", [Optional(), Email(message="Invalid email")])
    username = StringField(
        "Username",
        validators=[
            Optional(),
            Length(max=80, message="Username must be 80 characters or fewer."),
            Regexp(
                r"^[A-Za-z0-9_.-]+$",
                message="Username may only include letters, numbers, dots, hyphens, and underscores.",
            ),
        ],
    )
    avatar = StringField("Avatar", [Optional(), URL(message="Avatar must be a URL")])
    timezone = StringField("Timezone", [Optional(), Length(max=64)])

    def validate_username(self, field):
        from models.user import User

        existing = User.query.filter(User.username == field.data.lower()).first()
        if existing and (not self.current_user or existing.id != self.current_user.id):
            raise ValidationError("This username is already in use.")

    def validate_email(self, field):
        from models.user import User

        if self.current_user is None:
            return
        existing = User.query.filter_by(
            email=field.data.lower(), organization_id=self.current_user.organization_id
        ).first()
        if existing and existing.id != self.current_user.id:
            raise ValidationError("This email is already in use.")


class AdminUserForm(ProfileForm):
    password = PasswordField("Password", [Optional(), Length(min=8)])
    role = StringField(
        "Role",
        [Optional(), AnyOf([role.value for role in UserRole], message="Invalid role")],
        filters=[_upper],
    )
    team_id = NullableIntegerField("Team")
    is_active = JSONField("Active")


class NewUserForm(ApiForm):
    name = StringField("Name", [DataRequired(message="Name is required")], filters=[_strip])
    email = StringField(
        "Email", [DataRequired(message="Email is required"), Email(message="Invalid email")]
    )
    password = PasswordField("Password", [Optional(), Length(min=8)])
    role = StringField(
        "Role",
        [Optional(), AnyOf([UserRole.ADMIN.value, UserRole.USER.value], message="Invalid role")],
        filters=[_upper],
    )
    team_id = NullableIntegerField("Team")


class NotificationSettingsForm(ApiForm):
    email = JSONField("Email")
    push = JSONField("Push")
    digest_frequency = StringField(
        "Digest frequency",
        [
            Optional(),
            AnyOf([f.value for f in DigestFrequency], message="Invalid digest frequency"),
        ],
        filters=[lambda value: value.strip().lower() if isinstance(value, str) else value],
    )
    types = JSONField("Types")

    def validate_email(self, field):
        if field.data is not None and not isinstance(field.data, bool):
            raise ValidationError("email must be a boolean")

    def validate_push(self, field):
        if field.data is not None and not isinstance(field.data, bool):
            raise ValidationError("push must be a boolean")

    def validate_types(self, field):
        if field.data is None:
            return
        if not isinstance(field.data, dict):
            raise ValidationError("types must be an object")
        for name, enabled in field.data.items():
            if name not in CONFIGURABLE_NOTIFICATION_TYPES or not isinstance(enabled, bool):
                raise ValidationError(f"Invalid notification type setting '{name}'")


class TaskStepForm(ApiForm):
    title = StringField("Title", [DataRequired(message="Step title is required")], filters=[_strip])
    owner_id = NullableIntegerField("Owner", [DataRequired(message="Step owner is required")])
    description = TextAreaField("Description")
    due_at = IsoDateTimeField("Due at")
    status = StringField(
        "Status",
        [Optional(), AnyOf([s.value for s in StepStatus], message="Invalid step status")],
        filters=[_upper],
    )

    def cleaned(self) -> dict:
        return {
            "title": self.title.data,
            "owner_id": self.owner_id.data,
            "description": self.description.data,
            "due_at": self.due_at.data,
            "status": self.status.data or StepStatus.OPEN.value,
        }


class TaskForm(ApiForm):
    """Task body for both creation and partial updates.

    Routes pass only the keys present in the JSON payload to the service, so
    absent keys are left untouched on update.
    """

    title = StringField("Title", [Optional(), Length(max=500)], filters=[_strip])
    description = TextAreaField("Description")
    owner_id = NullableIntegerField("Owner")
    helpers = IntegerListField("Helpers")
    mentions = IntegerListField("Mentions")
    team_id = NullableIntegerField("Team")
    project_id = NullableIntegerField("Project")
    status = StringField(
        "Status",
        [Optional(), AnyOf([s.value for s in TaskStatus], message="Invalid status")],
        filters=[_upper],
    )
    priority = StringField(
        "Priority",
        [Optional(), AnyOf([p.value for p in TaskPriority], message="Invalid priority")],
        filters=[_upper],
    )
    visibility = StringField(
        "Visibility",
        [Optional(), AnyOf([v.value for v in TaskVisibility], message="Invalid visibility")],
        filters=[_upper],
    )
    tags = JSONListField("Tags")
    due_date = IsoDateTimeField("Due date")
    steps = JSONListField("Steps")
    current_step_index = NullableIntegerField("Current step")
    custom = JSONField("Custom")

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.cleaned_steps: list[dict] = []

    def validate_tags(self, field):
        if any(not isinstance(tag, str) for tag in field.data or []):
            raise ValidationError("Tags must be strings")

    def validate_custom(self, field):
        if field.data is not None and not isinstance(field.data, dict):
            raise ValidationError("custom must be an object")

    def validate_steps(self, field):
        cleaned = []
        for raw in field.data or []:
            if not isinstance(raw, dict):
                raise ValidationError("Invalid step")
            step_form = TaskStepForm(formdata=MultiDict(raw))
            if not step_form.validate():
                raise ValidationError(first_error(step_form))
            cleaned.append(step_form.cleaned())
        self.cleaned_steps = cleaned

    def cleaned(self, present) -> dict:
        """Return validated values for the keys in ``present``."""
        values = {
            "title": self.title.data,
            "description": self.description.data,
            "owner_id": self.owner_id.data,
            "helpers": self.helpers.data,
            "mentions": self.mentions.data,
            "team_id": self.team_id.data,
            "project_id": self.project_id.data,
            "status": self.status.data,
            "priority": self.priority.data,
            "visibility": self.visibility.data,
            "tags": self.tags.data,
            "due_date": self.due_date.data,
            "steps": self.cleaned_steps,
            "current_step_index": self.current_step_index.data,
            "custom": self.custom.data,
        }
        return {key: value for key, value in values.items() if key in present}


class TransitionForm(ApiForm):
    action = StringField("Action", [DataRequired(message="action is required")], filters=[_upper])


class LoopForm(ApiForm):
    sequence = JSONListField("Sequence")
    parallel = BooleanField("Parallel")


class LoopUpdateForm(ApiForm):
    sequence = JSONListField("Sequence", [DataRequired(message="sequence must be a non-empty list.")])

    def validate_sequence(self, field):
        if any(not isinstance(entry, dict) for entry in field.data):
            raise ValidationError("sequence must be a list of steps.")


class LoopTemplateForm(ApiForm):
    name = StringField("Name", [DataRequired(message="Name is required")], filters=[_strip])
    steps = JSONListField("Steps")


class LoopTemplateUpdateForm(ApiForm):
    """Partial template update; routes only apply the keys that were sent."""

    name = StringField(
        "Name", [IsString("Name must be a string"), Optional(), Length(max=200)], filters=[_strip]
    )
    steps = JSONListField("Steps")


class CommentForm(ApiForm):
    task_id = NullableIntegerField("Task", [DataRequired(message="task_id is required")])
    content = TextAreaField("Content", [DataRequired(message="Comment content is required")])
    parent_id = NullableIntegerField("Parent")


class NotificationReadForm(ApiForm):
    read = JSONField("Read")

    def validate_read(self, field):
        if field.data is not None and not isinstance(field.data, bool):
            raise ValidationError("read must be a boolean")


class PushSubscribeForm(ApiForm):
    subscription = JSONField("Subscription", [DataRequired(message="subscription is required")])

    def validate_subscription(self, field):
        data = field.data
        keys = data.get("keys") if isinstance(data, dict) else None
        if (
            not isinstance(data, dict)
            or not data.get("endpoint")
            or not isinstance(keys, dict)
            or not keys.get("p256dh")
            or not keys.get("auth")
        ):
            raise ValidationError("Invalid subscription")


class PushUnsubscribeForm(ApiForm):
    endpoint = StringField("Endpoint", [DataRequired(message="endpoint is required")])


class PushSendForm(ApiForm):
    user_id = NullableIntegerField("User", [DataRequired(message="user_id is required")])
    title = StringField("Title", [DataRequired(message="title is required")])
    body = StringField("Body", [DataRequired(message="body is required")])


class SavedSearchForm(ApiForm):
    name = StringField("Name", [DataRequired(message="Name is required")], filters=[_strip])
    query = StringField("Query", [Optional()])


class SavedSearchUpdateForm(ApiForm):
    name = StringField(
        "Name", [IsString("Name must be a string"), Optional(), Length(max=200)], filters=[_strip]
    )
    query = StringField("Query", [IsString("Query must be a string"), Optional()])


class ProjectTypeForm(ApiForm):
    name = StringField("Name", [DataRequired(message="Name is required")], filters=[_strip])


class ProjectForm(ApiForm):
    name = StringField("Name", [Optional(), Length(max=200)], filters=[_strip])
    description = TextAreaField("Description")
    type_id = NullableIntegerField("Type")


class ObjectiveForm(ApiForm):
    id = NullableIntegerField("Objective")
    date = StringField("Date", [DataRequired(message="date is required")])
    team_id = NullableIntegerField("Team", [DataRequired(message="team_id is required")])
    title = StringField("Title", [DataRequired(message="title is required")], filters=[_strip])
    owner_id = NullableIntegerField("Owner", [DataRequired(message="owner_id is required")])
    linked_task_ids = IntegerListField("Linked tasks")
    status = StringField(
        "Status", [Optional(), AnyOf(["OPEN", "DONE"], message="Invalid status")], filters=[_upper]
    )

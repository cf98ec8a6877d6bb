from django.contrib.auth import get_user_model
from django.db import models

User = get_user_model()


class UserProfile(models.Model):
    """Per-user role record.

    Every account has one (created on demand). Admins build surveys and review
    responses; users only fill surveys in.
    """

    class Role(models.TextChoices):
        ADMIN = "admin", "Admin"
        USER = "user", "User"

    user = models.OneToOneField(
        User, on_delete=models.CASCADE, related_name="profile"
    )
    role = models.CharField(max_length=16, choices=Role.choices, default=Role.USER)
    display_name = models.CharField(max_length=255, blank=True, default="")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = "User Profile"
        verbose_name_plural = "User Profiles"

    def __str__(self) -> str:  # pragma: no cover
        return f"{self.user.username} ({self.role})"

    @classmethod
    def get_or_create_for_user(cls, user):
        """Get or create the profile for a user, defaulting to the user role."""
        profile, created = cls.objects.get_or_create(
            user=user, defaults={"role": cls.Role.USER}
        )
        return profile

    @property
    def is_admin(self) -> bool:
        return self.role == self.Role.ADMIN

from django import forms
from django.contrib.auth import get_user_model
from django.contrib.auth.forms import UserCreationForm

from .models import UserProfile

User = get_user_model()


class SignupForm(UserCreationForm):
    email = forms.EmailField(required=True)
    display_name = forms.CharField(required=False, max_length=255)

    class Meta(UserCreationForm.Meta):
        model = User
        fields = ("email",)

    def clean_email(self):
        email = (self.cleaned_data.get("email") or "").strip().lower()
        if not email:
            raise forms.ValidationError("Email is required")
        if User.objects.filter(email__iexact=email).exists():
            raise forms.ValidationError("An account with this email already exists")
        return email

    def save(self, commit=True):
        email = self.cleaned_data["email"].strip().lower()
        user = User()
        user.username = email
        user.email = email
        user.set_password(self.cleaned_data["password1"])
        if commit:
            user.save()
            # New accounts always start as plain users
            profile = UserProfile.get_or_create_for_user(user)
            display_name = (self.cleaned_data.get("display_name") or "").strip()
            if display_name:
                profile.display_name = display_name
                profile.save(update_fields=["display_name", "updated_at"])
        return user

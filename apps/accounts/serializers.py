from django.contrib.auth import get_user_model
from django.contrib.auth.password_validation import validate_password
from rest_framework import serializers

User = get_user_model()


class UserSerializer(serializers.ModelSerializer):
    password = serializers.CharField(write_only=True, required=False, allow_blank=False, style={"input_type": "password"})

    class Meta:
        model = User
        fields = ["id", "username", "password", "role", "is_active", "date_joined"]
        read_only_fields = ["id", "date_joined"]

    def validate_username(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError("username is required")
        return value

    def validate(self, attrs):
        if self.instance is None and not attrs.get("password"):
            raise serializers.ValidationError({"password": "password is required"})
        password = attrs.get("password")
        if password:
            validate_password(password, user=self.instance)
        return attrs

    def create(self, validated_data):
        password = validated_data.pop("password")
        user = User(**validated_data)
        user.set_password(password)
        user.save()
        user.sync_role_group()
        return user

    def update(self, instance, validated_data):
        password = validated_data.pop("password", None)
        for field, value in validated_data.items():
            setattr(instance, field, value)
        if password:
            instance.set_password(password)
        instance.save()
        if "role" in validated_data:
            instance.sync_role_group()
        return instance

from voice_chat.adapters.credentials import FileCredentialProvider, StaticCredentialProvider


class TestFileCredentialProvider:
    def test_reads_and_strips_key(self, tmp_path):
        key_file = tmp_path / "api-key"
        key_file.write_text("0123456789abcdef0123.secret\n")
        assert FileCredentialProvider(str(key_file)).get_key() == "0123456789abcdef0123.secret"

    def test_missing_file(self, tmp_path):
        assert FileCredentialProvider(str(tmp_path / "absent")).get_key() is None

    def test_empty_file(self, tmp_path):
        key_file = tmp_path / "api-key"
        key_file.write_text("  \n")
        assert FileCredentialProvider(str(key_file)).get_key() is None

    def test_unset_path(self):
        assert FileCredentialProvider("").get_key() is None

    def test_picks_up_rotated_key(self, tmp_path):
        key_file = tmp_path / "api-key"
        key_file.write_text("first-key-0123456789.abc")
        provider = FileCredentialProvider(str(key_file))
        assert provider.get_key() == "first-key-0123456789.abc"
        key_file.write_text("second-key-0123456789.abc")
        assert provider.get_key() == "second-key-0123456789.abc"

    def test_odd_format_still_returned(self, tmp_path):
        key_file = tmp_path / "api-key"
        key_file.write_text("short")
        assert FileCredentialProvider(str(key_file)).get_key() == "short"


class TestStaticCredentialProvider:
    def test_blank_key_is_missing(self):
        assert StaticCredentialProvider("  ").get_key() is None

    def test_set_key(self):
        provider = StaticCredentialProvider()
        assert provider.get_key() is None
        provider.set_key("abc")
        assert provider.get_key() == "abc"

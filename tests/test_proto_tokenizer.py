from proto_conform.parser.proto_tokenizer import ProtoTokenType, tokenize_proto


def _types(tokens):
    return [t.type for t in tokens]


class TestBasicTokens:
    def test_field_declaration(self):
        tokens = tokenize_proto("int32 order_id = 1;")
        assert _types(tokens) == [
            ProtoTokenType.IDENT,
            ProtoTokenType.IDENT,
            ProtoTokenType.EQUALS,
            ProtoTokenType.NUMBER,
            ProtoTokenType.SEMICOLON,
            ProtoTokenType.EOF,
        ]
        assert tokens[0].value == "int32"
        assert tokens[1].value == "order_id"
        assert tokens[3].value == "1"

    def test_keywords(self):
        tokens = tokenize_proto("message optional repeated map oneof")
        assert _types(tokens)[:-1] == [
            ProtoTokenType.MESSAGE,
            ProtoTokenType.OPTIONAL,
            ProtoTokenType.REPEATED,
            ProtoTokenType.MAP,
            ProtoTokenType.ONEOF,
        ]

    def test_dotted_identifier_is_one_token(self):
        tokens = tokenize_proto("google.protobuf.Timestamp .pkg.Msg")
        assert tokens[0].value == "google.protobuf.Timestamp"
        assert tokens[1].value == ".pkg.Msg"
        assert tokens[1].type == ProtoTokenType.IDENT

    def test_numbers(self):
        tokens = tokenize_proto("-5 0x1F 1.5 1e-3")
        assert [t.value for t in tokens[:-1]] == ["-5", "0x1F", "1.5", "1e-3"]
        assert all(t.type == ProtoTokenType.NUMBER for t in tokens[:-1])

    def test_string_unescaping(self):
        tokens = tokenize_proto(r'"^[a-z]+\\d$" ' + "'it\\'s'")
        assert tokens[0].value == r"^[a-z]+\d$"
        assert tokens[1].value == "it's"

    def test_line_and_column(self):
        tokens = tokenize_proto("syntax = \"proto3\";\n  message Foo {}")
        msg = next(t for t in tokens if t.type == ProtoTokenType.MESSAGE)
        assert msg.line == 2
        assert msg.col == 3


class TestComments:
    def test_leading_line_comment_attaches_to_next_token(self):
        tokens = tokenize_proto("// A customer order.\nmessage Order {}")
        assert tokens[0].type == ProtoTokenType.MESSAGE
        assert tokens[0].leading_comment == "A customer order."

    def test_multiple_comment_lines_join(self):
        tokens = tokenize_proto("// first\n// second\nmessage Order {}")
        assert tokens[0].leading_comment == "first\nsecond"

    def test_blank_line_detaches_comment(self):
        tokens = tokenize_proto("// license header\n\nmessage Order {}")
        assert tokens[0].leading_comment == ""

    def test_trailing_comment_attaches_to_previous_token(self):
        tokens = tokenize_proto("int32 id = 1; // the id\nint32 other = 2;")
        semi = tokens[4]
        assert semi.type == ProtoTokenType.SEMICOLON
        assert semi.trailing_comment == "the id"
        # not carried over to the next line
        assert tokens[5].leading_comment == ""

    def test_block_comment_strips_gutter(self):
        text = "/**\n * Order placed by a customer.\n * Immutable once paid.\n */\nmessage Order {}"
        tokens = tokenize_proto(text)
        assert tokens[0].leading_comment == "Order placed by a customer.\nImmutable once paid."

    def test_triple_slash_doc_comment(self):
        tokens = tokenize_proto("/// Documented.\nmessage Order {}")
        assert tokens[0].leading_comment == "Documented."
